"""
LangChain-backed worker invoker.
One configured chat model and prompt set per worker role.
"""
import json
import re
import time
from typing import Any, Dict, Optional

from langchain_core.language_models.base import BaseLanguageModel
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage
from langchain_core.output_parsers import StrOutputParser

from config_system.config_loader import PromptsConfig, WorkerConfig
from dealflow.runtime.rate_limit import ainvoke_with_rate_limit_retry
from dealflow.state.models import WorkerRole
from dealflow.workers import ToolActivity, WorkerReply, WorkerRequest
from exceptions import WorkerError
from logging_config import log_debug, log_error

_FENCED_JSON = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def extract_json(text: str) -> Any:
    """
    Pull a JSON document out of a model response.

    Tries the whole response, then a fenced code block, then the outermost
    braces. Returns the original text when nothing parses so the caller's
    validation reports it.
    """
    candidates = [text.strip()]
    fenced = _FENCED_JSON.search(text)
    if fenced:
        candidates.append(fenced.group(1).strip())
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start:end + 1])

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    return text


def render_context(context: Dict[str, str]) -> str:
    return "\n\n".join(f"=== {name.upper()} ===\n{value}" for name, value in context.items())


class Worker:
    """A single worker role bound to its chat model and prompts."""

    def __init__(self, config: WorkerConfig, prompts: PromptsConfig, llm: BaseLanguageModel):
        self.config = config
        self.prompts = prompts
        self.llm = llm
        self.logger = None

    def set_logger(self, logger):
        """Set logger for this worker instance."""
        self.logger = logger

    def build_messages(self, request: WorkerRequest) -> list:
        messages = [SystemMessage(content=self.prompts.system_message)]
        messages.append(HumanMessage(content=self.prompts.human_message_template.format(
            instruction=request.instruction,
            context=render_context(request.context),
        )))
        if request.retry is not None:
            messages.append(HumanMessage(content=request.retry.render()))
        if self.prompts.ai_message_prefix:
            messages.append(AIMessage(content=self.prompts.ai_message_prefix))
        return messages

    async def invoke(self, request: WorkerRequest) -> WorkerReply:
        messages = self.build_messages(request)
        chain = self.llm | StrOutputParser()
        started = time.perf_counter()

        if self.logger:
            log_debug(self.logger, f"Invoking {self.config.name} for {request.task_id}", self.config.name, {
                "message_count": len(messages),
                "retry": request.retry is not None,
            })

        try:
            response = await ainvoke_with_rate_limit_retry(
                lambda: chain.ainvoke(messages), self.config.rate_limit
            )
        except Exception as e:
            if self.logger:
                log_error(self.logger, f"Model call failed for {request.task_id}: {e}", self.config.name, e)
            raise WorkerError(f"{self.config.name} failed for {request.task_id}: {e}") from e

        if self.logger:
            log_debug(self.logger, f"Model response for {request.task_id}", self.config.name, {
                "response_length": len(response),
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            })

        return WorkerReply(
            output=extract_json(response),
            tool_activity=[ToolActivity(tool="model", detail=self.config.llm)],
        )


class LangChainWorkerInvoker:
    """Routes each request to the worker configured for its role."""

    def __init__(self, workers: Dict[WorkerRole, Worker]):
        self.workers = workers

    def set_logger(self, logger):
        for worker in self.workers.values():
            worker.set_logger(logger)

    async def invoke(self, request: WorkerRequest) -> WorkerReply:
        worker: Optional[Worker] = self.workers.get(request.role)
        if worker is None:
            raise WorkerError(f"No worker configured for role '{request.role.value}'")
        return await worker.invoke(request)
