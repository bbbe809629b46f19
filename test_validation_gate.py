"""Tests for the validate-then-retry-once gate around worker calls."""

import asyncio
import unittest

from dealflow.contracts.gate import ValidationGate, validate_with_retry
from dealflow.contracts.models import AnalystOutput, ContractName
from dealflow.events.models import FailureKind
from dealflow.state.models import WorkerRole
from dealflow.workers import ToolActivity, WorkerReply, WorkerRequest
from exceptions import WorkerError

VALID_ANALYST = {"facts": [{"text": "ARR $1.2M", "evidence_ids": ["ev_1"]}], "contradictions": [], "unknowns": []}


class SequenceProducer:
    """Hands out scripted replies and records the feedback each call received."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.feedback = []

    async def __call__(self, feedback):
        self.feedback.append(feedback)
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        if reply == "hang":
            await asyncio.sleep(30)
        return WorkerReply(output=reply, tool_activity=[ToolActivity(tool="model")])


class TestValidateWithRetry(unittest.IsolatedAsyncioTestCase):

    async def test_valid_first_attempt(self):
        produce = SequenceProducer(VALID_ANALYST)
        result = await validate_with_retry(ContractName.ANALYST, produce)

        self.assertTrue(result.ok)
        self.assertIsInstance(result.data, AnalystOutput)
        self.assertEqual(result.retry_count, 0)
        self.assertEqual(produce.feedback, [None])

    async def test_retry_carries_structured_issues(self):
        produce = SequenceProducer("not json", VALID_ANALYST)
        result = await validate_with_retry(ContractName.ANALYST, produce)

        self.assertTrue(result.ok)
        self.assertEqual(result.retry_count, 1)
        feedback = produce.feedback[1]
        self.assertEqual(feedback.contract, ContractName.ANALYST)
        self.assertEqual(feedback.issues[0].path, "(root)")
        self.assertIn("failed validation", feedback.render())
        self.assertEqual(len(result.tool_activity), 2)

    async def test_second_failure_is_degraded_without_third_attempt(self):
        produce = SequenceProducer("not json", {"facts": "still wrong"}, VALID_ANALYST)
        result = await validate_with_retry(ContractName.ANALYST, produce)

        self.assertFalse(result.ok)
        self.assertEqual(result.failure_kind, FailureKind.VALIDATION)
        self.assertEqual(result.retry_count, 1)
        self.assertEqual(len(produce.feedback), 2)
        self.assertIn("facts", result.error_message())

    async def test_worker_exception_is_contained(self):
        produce = SequenceProducer(WorkerError("model unavailable"))
        result = await validate_with_retry(ContractName.ANALYST, produce)

        self.assertFalse(result.ok)
        self.assertEqual(result.failure_kind, FailureKind.WORKER)
        self.assertEqual(result.retry_count, 0)
        self.assertIn("model unavailable", result.error_message())

    async def test_exception_on_retry_counts_the_retry(self):
        produce = SequenceProducer("not json", WorkerError("gone"))
        result = await validate_with_retry(ContractName.ANALYST, produce)
        self.assertEqual(result.failure_kind, FailureKind.WORKER)
        self.assertEqual(result.retry_count, 1)

    async def test_timeout_is_contained(self):
        produce = SequenceProducer("hang")
        result = await validate_with_retry(ContractName.ANALYST, produce, timeout=0.05)

        self.assertFalse(result.ok)
        self.assertEqual(result.failure_kind, FailureKind.WORKER)
        self.assertIn("timed out", result.error)

    async def test_cancellation_propagates(self):
        produce = SequenceProducer("hang")
        task = asyncio.ensure_future(validate_with_retry(ContractName.ANALYST, produce))
        await asyncio.sleep(0.01)
        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task


class RecordingInvoker:
    def __init__(self, *outputs):
        self.outputs = list(outputs)
        self.requests = []

    async def invoke(self, request):
        self.requests.append(request)
        return WorkerReply(output=self.outputs.pop(0))


class TestValidationGate(unittest.IsolatedAsyncioTestCase):

    def _request(self):
        return WorkerRequest(role=WorkerRole.ANALYST, task_id="analyst_1", contract=ContractName.ANALYST,
                             specialization="market", instruction="Analyse the market")

    async def test_retry_request_gets_feedback_attached(self):
        invoker = RecordingInvoker("not json", VALID_ANALYST)
        request = self._request()
        result = await ValidationGate(invoker, timeout_seconds=1.0).run(request)

        self.assertTrue(result.ok)
        self.assertIsNone(invoker.requests[0].retry)
        self.assertIsNotNone(invoker.requests[1].retry)
        self.assertEqual(invoker.requests[1].task_id, "analyst_1")
        self.assertIsNone(request.retry)

    async def test_known_evidence_ids_are_enforced_for_synthesis(self):
        output = {"hypotheses": [{"id": "h1", "text": "Demand", "support_evidence_ids": ["ev_ghost"]}]}
        invoker = RecordingInvoker(output, output)
        request = WorkerRequest(role=WorkerRole.SYNTHESIS, task_id="synthesis", contract=ContractName.SYNTHESIS,
                                instruction="Synthesize")
        result = await ValidationGate(invoker).run(request, known_evidence_ids=["ev_1"])

        self.assertFalse(result.ok)
        self.assertEqual(result.failure_kind, FailureKind.VALIDATION)
        self.assertEqual(len(invoker.requests), 2)


if __name__ == "__main__":
    unittest.main()
