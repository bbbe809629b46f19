"""Tests for the LangChain-backed worker invoker."""

import unittest

from langchain_core.language_models.fake_chat_models import FakeListChatModel
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from config_system.config_loader import PromptsConfig, WorkerConfig
from core.worker import LangChainWorkerInvoker, Worker, extract_json, render_context
from dealflow.contracts.models import ContractName
from dealflow.contracts.validation import ValidationIssue
from dealflow.state.models import WorkerRole
from dealflow.workers import RetryFeedback, WorkerRequest
from exceptions import WorkerError

PROMPTS = PromptsConfig(
    system_message="You screen deals.",
    human_message_template="{instruction}\n\n{context}",
)


def make_worker(responses, prompts=PROMPTS):
    return Worker(
        config=WorkerConfig(name="analyst", llm="fake_model"),
        prompts=prompts,
        llm=FakeListChatModel(responses=responses),
    )


def make_request(retry=None):
    return WorkerRequest(
        role=WorkerRole.ANALYST,
        task_id="analyst_1",
        contract=ContractName.ANALYST,
        specialization="market",
        context={"deal": '{"name": "Acme"}', "evidence": "[]"},
        instruction="Analyse the market",
        retry=retry,
    )


class TestExtractJson(unittest.TestCase):

    def test_plain_json(self):
        self.assertEqual(extract_json('{"facts": []}'), {"facts": []})

    def test_fenced_block(self):
        text = 'Here you go:\n```json\n{"facts": [1]}\n```\nThanks'
        self.assertEqual(extract_json(text), {"facts": [1]})

    def test_outer_braces(self):
        self.assertEqual(extract_json('Result: {"a": {"b": 2}} done'), {"a": {"b": 2}})

    def test_unparsable_returns_text(self):
        self.assertEqual(extract_json("no json here"), "no json here")


class TestWorker(unittest.IsolatedAsyncioTestCase):

    def test_messages_include_context_sections(self):
        messages = make_worker(["{}"]).build_messages(make_request())
        self.assertIsInstance(messages[0], SystemMessage)
        self.assertIsInstance(messages[1], HumanMessage)
        self.assertIn("Analyse the market", messages[1].content)
        self.assertIn("=== EVIDENCE ===", messages[1].content)
        self.assertEqual(len(messages), 2)

    def test_retry_feedback_is_appended(self):
        feedback = RetryFeedback.from_issues(
            ContractName.ANALYST, [ValidationIssue(path="facts", message="Field required")], {"oops": 1})
        messages = make_worker(["{}"]).build_messages(make_request(retry=feedback))
        self.assertEqual(len(messages), 3)
        self.assertIn("- facts: Field required", messages[2].content)

    def test_ai_prefix(self):
        prompts = PROMPTS.model_copy(update={"ai_message_prefix": "{"})
        messages = make_worker(["{}"], prompts).build_messages(make_request())
        self.assertIsInstance(messages[-1], AIMessage)

    async def test_invoke_parses_model_output(self):
        worker = make_worker(['```json\n{"facts": [], "contradictions": [], "unknowns": []}\n```'])
        reply = await worker.invoke(make_request())
        self.assertEqual(reply.output["facts"], [])
        self.assertEqual(reply.tool_activity[0].tool, "model")
        self.assertEqual(reply.tool_activity[0].detail, "fake_model")

    def test_render_context_order(self):
        rendered = render_context({"deal": "A", "evidence": "B"})
        self.assertLess(rendered.index("=== DEAL ==="), rendered.index("=== EVIDENCE ==="))


class TestLangChainWorkerInvoker(unittest.IsolatedAsyncioTestCase):

    async def test_routes_by_role(self):
        invoker = LangChainWorkerInvoker({WorkerRole.ANALYST: make_worker(['{"facts": []}'])})
        reply = await invoker.invoke(make_request())
        self.assertEqual(reply.output, {"facts": []})

    async def test_missing_role_raises(self):
        invoker = LangChainWorkerInvoker({})
        with self.assertRaises(WorkerError):
            await invoker.invoke(make_request())


if __name__ == "__main__":
    unittest.main()
