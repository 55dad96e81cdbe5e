"""
Pytest configuration and fixtures.
Shared execution logs, model results and fake chat models.
"""

from typing import Any
from unittest.mock import Mock

import pytest
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.outputs import ChatResult, Generation, LLMResult

from lmchat_tracing.callbacks import LlmRunTracing
from lmchat_tracing.execution_log import NodeExecutionLog, RecordedInput


class FailingChatModel(BaseChatModel):
    """Chat model whose every call fails with the given message."""

    error_message: str = "rate limited"

    @property
    def _llm_type(self) -> str:
        return "failing-fake"

    def _generate(self, messages, stop=None, run_manager=None, **kwargs: Any) -> ChatResult:
        raise ValueError(self.error_message)


@pytest.fixture
def llm_result():
    """Factory for LLM results, one generation batch per text."""

    def make(*texts: str) -> LLMResult:
        return LLMResult(generations=[[Generation(text=text)] for text in texts])

    return make


@pytest.fixture
def failing_model():
    """Factory for chat models that fail with the given message."""

    def make(message: str = "rate limited", **kwargs) -> FailingChatModel:
        return FailingChatModel(error_message=message, **kwargs)

    return make


@pytest.fixture
def execution_log():
    """Fresh in-memory execution log."""
    return NodeExecutionLog("Langfuse Chat Model (OpenAI)")


@pytest.fixture
def run_tracing(execution_log):
    """Run tracing callback writing into the execution_log fixture."""
    return LlmRunTracing(execution_log)


@pytest.fixture
def mock_execution_log():
    """Execution log double with a counter-based add_input_data."""
    log = Mock()
    log.node_name = "Mock Node"
    log.get_next_run_index.return_value = 0
    counter = iter(range(1000))
    log.add_input_data.side_effect = lambda *args, **kwargs: RecordedInput(index=next(counter))
    return log


@pytest.fixture
def event_sink():
    """AI event sink double."""
    return Mock()
