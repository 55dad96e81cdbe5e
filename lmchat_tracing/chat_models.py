"""
Chat model supply for the Langfuse-traced nodes.

Every supplied model carries two callbacks: the Langfuse LangChain handler
(traces to Langfuse) and ``LlmRunTracing`` (pairs inputs and outputs in the
host execution log). Provider calls go through LiteLLM.
"""

import logging
from dataclasses import dataclass
from typing import Any

from langchain_core.callbacks import BaseCallbackHandler
from langchain_litellm import ChatLiteLLM
from langfuse import Langfuse
from langfuse.langchain import CallbackHandler
from pydantic import BaseModel, Field

from lmchat_tracing.callbacks import LlmRunTracing
from lmchat_tracing.config import settings
from lmchat_tracing.execution_log import ExecutionLogSink
from lmchat_tracing.providers import get_provider
from lmchat_tracing.utils.metadata import build_trace_metadata

logger = logging.getLogger(__name__)


class ProviderCredentials(BaseModel):
    """Provider API key plus the Langfuse project keys."""

    api_key: str | None = None
    langfuse_public_key: str | None = None
    langfuse_secret_key: str | None = None
    langfuse_base_url: str = "https://cloud.langfuse.com"

    @classmethod
    def from_settings(cls, provider: str) -> "ProviderCredentials":
        return cls(
            api_key=settings.provider_api_key(provider),
            langfuse_public_key=settings.langfuse_public_key,
            langfuse_secret_key=settings.langfuse_secret_key,
            langfuse_base_url=settings.langfuse_base_url,
        )


class LangfuseMetadata(BaseModel):
    """Per-node Langfuse trace metadata."""

    session_id: str | None = None
    user_id: str | None = None
    custom_metadata: str | dict[str, Any] = Field(default_factory=dict)


class TracedChatLiteLLM(ChatLiteLLM):
    """
    ChatLiteLLM that serializes as a LangChain constructor.

    Start callbacks then receive the model options as constructor kwargs,
    with the API key replaced by a secret reference.
    """

    @classmethod
    def is_lc_serializable(cls) -> bool:
        return True

    @property
    def lc_secrets(self) -> dict[str, str]:
        return {"api_key": "LITELLM_API_KEY"}

    def to_json(self):
        serialized = super().to_json()
        # The litellm module handle is not an option.
        if serialized.get("type") == "constructor":
            serialized["kwargs"].pop("client", None)
        return serialized


@dataclass
class SuppliedModel:
    model: TracedChatLiteLLM
    run_tracing: LlmRunTracing
    langfuse_handler: CallbackHandler | None = None


def build_model_kwargs(provider: str, options: dict[str, Any] | None) -> dict[str, Any]:
    """
    Map node options onto ChatLiteLLM fields.

    Unset options are left to the provider's own defaults.
    """
    definition = get_provider(provider)
    options = options or {}

    fields: dict[str, Any] = dict(definition.get("fixed_fields", {}))
    for option, field_name in definition["option_fields"].items():
        value = options.get(option)
        if value is not None:
            fields[field_name] = value

    if provider == "openai":
        # -1 means "no limit" for OpenAI nodes
        if fields.get("max_tokens") == -1:
            del fields["max_tokens"]
        if options.get("timeout") is not None:
            fields["request_timeout"] = options["timeout"] / 1000

    extra = {k: options[k] for k in definition["model_kwargs"] if options.get(k) is not None}
    if extra:
        fields["model_kwargs"] = extra

    known = set(definition["option_fields"]) | set(definition["model_kwargs"]) | {"timeout"}
    ignored = set(options) - known
    if ignored:
        logger.debug(f"Ignoring unsupported {provider} options: {sorted(ignored)}")

    return fields


def build_langfuse_handler(credentials: ProviderCredentials) -> CallbackHandler | None:
    """Create the Langfuse callback, or None when no Langfuse keys are set."""
    if not (credentials.langfuse_public_key and credentials.langfuse_secret_key):
        logger.warning("Langfuse keys not configured; Langfuse tracing disabled for this model")
        return None

    Langfuse(
        public_key=credentials.langfuse_public_key,
        secret_key=credentials.langfuse_secret_key,
        host=credentials.langfuse_base_url.removesuffix("/"),
        flush_at=settings.langfuse_flush_at,
    )
    return CallbackHandler(public_key=credentials.langfuse_public_key)


def supply_chat_model(
    provider: str,
    model_name: str,
    execution_log: ExecutionLogSink,
    credentials: ProviderCredentials | None = None,
    options: dict[str, Any] | None = None,
    langfuse: LangfuseMetadata | None = None,
    parent_run_index: int | None = None,
) -> SuppliedModel:
    """
    Build a traced chat model for one node execution.

    Args:
        provider: Provider key (openai, groq, google)
        model_name: Provider model id, without LiteLLM prefix
        execution_log: Host execution log of the node
        credentials: Provider and Langfuse keys; defaults to settings
        options: Node options (see providers.PROVIDERS)
        langfuse: Session/user ids and custom trace metadata
        parent_run_index: Run index of the enclosing traced call

    Raises:
        UnknownProviderError: If the provider is not defined
    """
    definition = get_provider(provider)
    credentials = credentials or ProviderCredentials.from_settings(provider)
    langfuse = langfuse or LangfuseMetadata()

    langfuse_handler = build_langfuse_handler(credentials)
    run_tracing = LlmRunTracing(execution_log, parent_run_index=parent_run_index)

    callbacks: list[BaseCallbackHandler] = [run_tracing]
    if langfuse_handler is not None:
        callbacks.insert(0, langfuse_handler)

    model = TracedChatLiteLLM(
        model=f"{definition['litellm_prefix']}/{model_name}",
        api_key=credentials.api_key,
        metadata=build_trace_metadata(
            langfuse.custom_metadata, langfuse.session_id, langfuse.user_id
        ),
        callbacks=callbacks,
        **build_model_kwargs(provider, options),
    )

    logger.info(f"Supplied {provider} model {model_name} for node {execution_log.node_name}")
    return SuppliedModel(model=model, run_tracing=run_tracing, langfuse_handler=langfuse_handler)
