"""
Run tracing callback for language-model nodes.

LangChain reports each model call as a start notification followed by exactly
one end or error notification, linked only by ``run_id``. ``LlmRunTracing``
pairs them again: the input is recorded in the host execution log on start,
and on completion the output (or failure) is written to the same run slot and
an AI event carrying input, options and response is emitted.

Instrumentation must never break model output delivery. Failures on the start
and end paths are logged at warning level and swallowed. The error path is the
exception: failing to record a model error is itself reported.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from langchain_core.callbacks import BaseCallbackHandler
from langchain_core.messages import BaseMessage, get_buffer_string
from langchain_core.outputs import LLMResult

from lmchat_tracing.execution_log import (
    AI_LANGUAGE_MODEL,
    ExecutionLogSink,
    NodeOperationError,
)
from lmchat_tracing.observability import AiEventSink, log_ai_event, trace_span

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RawOptions:
    """Options passed as a plain object."""

    values: Any


@dataclass(frozen=True)
class ConstructedOptions:
    """
    Options passed as a LangChain serialized constructor:
    ``{"lc": 1, "type": "constructor", "id": [...], "kwargs": {...}}``
    """

    kwargs: dict[str, Any]
    id: tuple[str, ...] = ()


def classify_options(serialized: Any) -> RawOptions | ConstructedOptions:
    """Tag the serialized model payload as raw or constructed options."""
    if isinstance(serialized, dict) and serialized.get("type") == "constructor":
        return ConstructedOptions(
            kwargs=dict(serialized.get("kwargs") or {}),
            id=tuple(serialized.get("id") or ()),
        )
    return RawOptions(values=serialized)


def resolve_invocation_options(serialized: Any) -> Any:
    """Effective options: constructor kwargs, or the payload itself."""
    options = classify_options(serialized)
    if isinstance(options, ConstructedOptions):
        return options.kwargs
    return options.values


@dataclass
class CallContext:
    """Input side of one in-flight model call."""

    index: int = 0
    messages: list[str] | str = field(default_factory=list)
    options: Any = field(default_factory=dict)


class RunLedger:
    """Live mapping of run id to call context, removed on completion."""

    def __init__(self):
        self._runs: dict[str, CallContext] = {}
        self._lock = threading.Lock()

    def open(self, run_id: str, context: CallContext) -> None:
        with self._lock:
            self._runs[run_id] = context

    def close(self, run_id: str) -> CallContext | None:
        with self._lock:
            return self._runs.pop(run_id, None)

    def __contains__(self, run_id: str) -> bool:
        with self._lock:
            return run_id in self._runs

    def __len__(self) -> int:
        with self._lock:
            return len(self._runs)


class LlmRunTracing(BaseCallbackHandler):
    """
    Correlates model call inputs and outputs for the host execution log.

    Args:
        execution_log: Host sink receiving input/output records
        event_sink: Sink for AI events; defaults to ``execution_log``
        parent_run_index: Run index of the enclosing invocation when this
            model is nested inside a larger traced call
    """

    name = "LlmRunTracing"
    connection_type = AI_LANGUAGE_MODEL

    # Let LangChain re-raise from on_llm_error; start/end never raise.
    raise_error = True
    run_inline = True

    def __init__(
        self,
        execution_log: ExecutionLogSink,
        event_sink: AiEventSink | None = None,
        parent_run_index: int | None = None,
    ):
        super().__init__()
        self.execution_log = execution_log
        self.event_sink = event_sink if event_sink is not None else execution_log
        self.runs = RunLedger()
        self.unmatched_completions = 0
        # Entry index of the most recent call this handler recorded.
        self.last_run_index: int | None = None

        self._parent_run_index = parent_run_index
        self._started = False
        self._counter_lock = threading.Lock()

    @property
    def parent_run_index(self) -> int | None:
        return self._parent_run_index

    def set_parent_run_index(self, run_index: int) -> None:
        """Set the enclosing run index. Must happen before the first call."""
        if self._started:
            logger.warning(
                f"[{self.name}] set_parent_run_index({run_index}) ignored: calls already started"
            )
            return
        self._parent_run_index = run_index

    def on_llm_start(
        self,
        serialized: dict[str, Any],
        prompts: list[str],
        *,
        run_id: UUID,
        parent_run_id: UUID | None = None,
        **kwargs: Any,
    ) -> None:
        self._start(serialized, prompts, run_id)

    def on_chat_model_start(
        self,
        serialized: dict[str, Any],
        messages: list[list[BaseMessage]],
        *,
        run_id: UUID,
        parent_run_id: UUID | None = None,
        **kwargs: Any,
    ) -> None:
        self._start(serialized, [get_buffer_string(m) for m in messages], run_id)

    def on_llm_end(
        self,
        response: LLMResult,
        *,
        run_id: UUID,
        parent_run_id: UUID | None = None,
        **kwargs: Any,
    ) -> None:
        try:
            context = self._close(run_id)
            record = {"response": {"generations": response.generations}}
            source_run_index = self._source_run_index(context)

            try:
                with trace_span("add_output_data", run_id=run_id, index=context.index):
                    self.execution_log.add_output_data(
                        self.connection_type,
                        context.index,
                        [[{"json": record}]],
                        source_run_index,
                    )
            except Exception as e:
                logger.warning(f"[{self.name}] on_llm_end failed to record output: {e}")

            log_ai_event(
                self.event_sink,
                "ai-llm-generated-output",
                {"messages": context.messages, "options": context.options, "response": record},
            )
        except Exception as e:
            logger.warning(f"[{self.name}] on_llm_end failed silently: {e}")

    def on_llm_error(
        self,
        error: BaseException,
        *,
        run_id: UUID,
        parent_run_id: UUID | None = None,
        **kwargs: Any,
    ) -> None:
        context = self._close(run_id)

        self.execution_log.add_output_data(
            self.connection_type,
            context.index,
            NodeOperationError(
                self.execution_log.node_name, error, functionality="configuration-node"
            ),
            self._source_run_index(context),
        )

        message = getattr(error, "message", None)
        log_ai_event(
            self.event_sink,
            "ai-llm-errored",
            {
                "error": message if message is not None else str(error),
                "run_id": str(run_id),
                "parent_run_id": str(parent_run_id) if parent_run_id else None,
            },
        )

    def _start(self, serialized: Any, prompts: list[str], run_id: UUID) -> None:
        self._started = True
        try:
            source_run_index = None
            if self._parent_run_index is not None:
                source_run_index = (
                    self._parent_run_index + self.execution_log.get_next_run_index()
                )

            options = resolve_invocation_options(serialized)

            with trace_span("add_input_data", run_id=run_id):
                recorded = self.execution_log.add_input_data(
                    self.connection_type,
                    [[{"json": {"messages": prompts, "options": options}}]],
                    source_run_index,
                )

            self.runs.open(
                str(run_id), CallContext(index=recorded.index, messages=prompts, options=options)
            )
            self.last_run_index = recorded.index
        except Exception as e:
            logger.warning(f"[{self.name}] on_llm_start failed silently: {e}")

    def _close(self, run_id: UUID) -> CallContext:
        context = self.runs.close(str(run_id))
        if context is None:
            with self._counter_lock:
                self.unmatched_completions += 1
            logger.warning(f"[{self.name}] no recorded start for run {run_id}, using empty context")
            return CallContext()
        return context

    def _source_run_index(self, context: CallContext) -> int | None:
        if self._parent_run_index is None:
            return None
        return self._parent_run_index + context.index
