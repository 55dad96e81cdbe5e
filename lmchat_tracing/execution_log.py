"""
Host workflow-execution log.

Keeps a per-node, per-run view of the inputs and outputs that flow through a
node's connections, plus the AI events emitted while the node ran. This is the
surface the run tracing callback writes into and the API exposes for
debugging.
"""

import logging
import threading
import time
import uuid
from collections import OrderedDict, defaultdict
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

from lmchat_tracing.observability import AiEvent

logger = logging.getLogger(__name__)

AI_LANGUAGE_MODEL = "ai_languageModel"

Functionality = Literal["regular", "configuration-node"]


class NodeOperationError(Exception):
    """
    Operational error raised by (or recorded for) a workflow node.

    Wraps either an exception or an error payload mapping coming from a
    provider, keeping the original around as ``cause``.
    """

    def __init__(
        self,
        node: str | None,
        error: BaseException | Mapping[str, Any] | str,
        functionality: Functionality = "regular",
        description: str | None = None,
    ):
        if isinstance(error, Mapping):
            message = str(error.get("message") or error)
        else:
            message = getattr(error, "message", None) or str(error)

        super().__init__(message)
        self.node = node
        self.cause = error
        self.functionality = functionality
        self.description = description

    @property
    def message(self) -> str:
        return self.args[0]

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "node": self.node,
            "functionality": self.functionality,
            "description": self.description,
            "cause": type(self.cause).__name__,
        }


@dataclass(frozen=True)
class RecordedInput:
    """Result of recording an input: the run index the log assigned."""

    index: int


class ExecutionLogSink(Protocol):
    """What a node needs from the host to record connection traffic."""

    node_name: str

    def get_next_run_index(self) -> int: ...

    def add_input_data(
        self, connection_type: str, data: list, source_run_index: int | None = None
    ) -> RecordedInput: ...

    def add_output_data(
        self,
        connection_type: str,
        run_index: int,
        data: list | NodeOperationError,
        source_run_index: int | None = None,
    ) -> None: ...


@dataclass
class RunEntry:
    """One run of a node on one connection type."""

    index: int
    input: list | None = None
    output: list | None = None
    error: NodeOperationError | None = None
    source_run_index: int | None = None
    started_at: float | None = None
    finished_at: float | None = None

    @property
    def status(self) -> str:
        if self.error is not None:
            return "error"
        if self.output is not None:
            return "success"
        return "running"

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "status": self.status,
            "input": self.input,
            "output": self.output,
            "error": self.error.to_dict() if self.error else None,
            "source_run_index": self.source_run_index,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }


@dataclass
class LoggedAiEvent:
    event: AiEvent
    data: Any
    ts: float = field(default_factory=time.time)


class NodeExecutionLog:
    """
    In-memory execution log for a single node execution.

    Implements both the execution-log sink and the AI event sink. Safe to
    share between threads.
    """

    def __init__(self, node_name: str, execution_id: str | None = None):
        self.node_name = node_name
        self.execution_id = execution_id or uuid.uuid4().hex
        self.created_at = time.time()
        self.events: list[LoggedAiEvent] = []

        self._runs: dict[str, list[RunEntry]] = defaultdict(list)
        self._lock = threading.Lock()

    def get_next_run_index(self) -> int:
        """Number of runs recorded so far across all connection types."""
        with self._lock:
            return sum(len(entries) for entries in self._runs.values())

    def add_input_data(
        self, connection_type: str, data: list, source_run_index: int | None = None
    ) -> RecordedInput:
        with self._lock:
            entries = self._runs[connection_type]
            entry = RunEntry(
                index=len(entries),
                input=data,
                source_run_index=source_run_index,
                started_at=time.time(),
            )
            entries.append(entry)

        logger.debug(f"[{self.node_name}] {connection_type} input recorded at run {entry.index}")
        return RecordedInput(index=entry.index)

    def add_output_data(
        self,
        connection_type: str,
        run_index: int,
        data: list | NodeOperationError,
        source_run_index: int | None = None,
    ) -> None:
        with self._lock:
            entry = self._entry(connection_type, run_index)
            if isinstance(data, NodeOperationError):
                entry.error = data
            else:
                entry.output = data
            if source_run_index is not None:
                entry.source_run_index = source_run_index
            entry.finished_at = time.time()

        logger.debug(f"[{self.node_name}] {connection_type} output recorded at run {run_index}")

    def log_ai_event(self, event: AiEvent, data: Any | None = None) -> None:
        with self._lock:
            self.events.append(LoggedAiEvent(event=event, data=data))
        logger.info(f"[{self.node_name}] AI event: {event}")

    def runs(self, connection_type: str = AI_LANGUAGE_MODEL) -> list[RunEntry]:
        with self._lock:
            return list(self._runs.get(connection_type, []))

    def _entry(self, connection_type: str, run_index: int) -> RunEntry:
        # Outputs may arrive for runs that never recorded an input.
        entries = self._runs[connection_type]
        while len(entries) <= run_index:
            entries.append(RunEntry(index=len(entries)))
        return entries[run_index]

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "execution_id": self.execution_id,
                "node_name": self.node_name,
                "created_at": self.created_at,
                "runs": {
                    connection_type: [entry.to_dict() for entry in entries]
                    for connection_type, entries in self._runs.items()
                },
                "events": [
                    {"event": e.event, "data": e.data, "ts": e.ts} for e in self.events
                ],
            }


class ExecutionStore:
    """
    Bounded store of node execution logs.

    OrderedDict so the oldest executions are evicted first. Expired entries
    (TTL) are pruned on every access, so memory use is self-healing.
    """

    def __init__(self, max_executions: int = 500, ttl_seconds: int = 3600):
        self.max_executions = max_executions
        self.ttl_seconds = ttl_seconds
        self._executions: OrderedDict[str, NodeExecutionLog] = OrderedDict()
        self._lock = threading.Lock()

    def get_or_create(self, execution_id: str | None, node_name: str) -> NodeExecutionLog:
        with self._lock:
            self._prune()
            if execution_id and execution_id in self._executions:
                self._executions.move_to_end(execution_id)
                return self._executions[execution_id]

            execution = NodeExecutionLog(node_name, execution_id=execution_id)
            self._executions[execution.execution_id] = execution
            while len(self._executions) > self.max_executions:
                evicted, _ = self._executions.popitem(last=False)
                logger.info(f"Evicted execution log {evicted}")
            return execution

    def get(self, execution_id: str) -> NodeExecutionLog | None:
        with self._lock:
            self._prune()
            return self._executions.get(execution_id)

    def delete(self, execution_id: str) -> bool:
        with self._lock:
            return self._executions.pop(execution_id, None) is not None

    def all(self) -> list[NodeExecutionLog]:
        with self._lock:
            return list(self._executions.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._executions)

    def _prune(self) -> None:
        now = time.time()
        expired = [
            eid for eid, log in self._executions.items() if now - log.created_at > self.ttl_seconds
        ]
        for eid in expired:
            del self._executions[eid]
