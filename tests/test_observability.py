"""
Tests for trace spans and AI event emission.
"""

import logging
from unittest.mock import Mock

import pytest
from langchain_core.messages import AIMessage
from langchain_core.outputs import Generation

from lmchat_tracing.observability import log_ai_event, trace_span


class TestTraceSpan:
    def test_logs_duration(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="lmchat_tracing.trace"):
            with trace_span("add_input_data", run_id="r1"):
                pass

        assert "[TRACE] add_input_data" in caplog.text
        assert "run_id=r1" in caplog.text

    def test_does_not_suppress_exceptions(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="lmchat_tracing.trace"):
            with pytest.raises(RuntimeError):
                with trace_span("add_output_data"):
                    raise RuntimeError("boom")

        assert "[TRACE] add_output_data" in caplog.text


class TestLogAiEvent:
    def test_payload_made_json_compatible(self):
        sink = Mock()

        log_ai_event(
            sink,
            "ai-llm-generated-output",
            {"messages": [AIMessage(content="hi")], "response": [[Generation(text="hi")]]},
        )

        event, data = sink.log_ai_event.call_args.args
        assert event == "ai-llm-generated-output"
        assert data["messages"][0]["content"] == "hi"
        assert data["response"][0][0]["text"] == "hi"

    def test_unknown_objects_stringified(self):
        sink = Mock()

        log_ai_event(sink, "ai-llm-errored", {"error": object()})

        assert isinstance(sink.log_ai_event.call_args.args[1]["error"], str)

    def test_no_data(self):
        sink = Mock()

        log_ai_event(sink, "ai-llm-errored")

        sink.log_ai_event.assert_called_once_with("ai-llm-errored", None)

    def test_sink_failure_logged_not_raised(self, caplog):
        sink = Mock()
        sink.log_ai_event.side_effect = ConnectionError("down")

        with caplog.at_level(logging.WARNING, logger="lmchat_tracing.trace"):
            log_ai_event(sink, "ai-llm-errored", {"error": "x"})

        assert "Error logging AI event ai-llm-errored" in caplog.text
