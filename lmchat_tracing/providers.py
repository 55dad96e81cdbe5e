"""
Provider definitions for the Langfuse-traced chat model nodes.

Each entry describes how a node's options map onto ``ChatLiteLLM`` fields,
where the provider lists its models, and which LiteLLM prefix routes the
call to it.
"""


class UnknownProviderError(KeyError):
    """Raised for a provider key that is not defined here."""


PROVIDERS = {
    "openai": {
        "display_name": "Langfuse Chat Model (OpenAI)",
        "description": "OpenAI Chat Model with Langfuse Tracing",
        "litellm_prefix": "openai",
        "models_url": "https://api.openai.com/v1/models",
        "option_defaults": {
            "frequency_penalty": 0,
            "max_retries": 3,
            "max_tokens": -1,
            "presence_penalty": 0,
            "temperature": 1,
            "timeout": 60000,
            "top_p": 1,
        },
        # node option -> model field
        "option_fields": {
            "temperature": "temperature",
            "top_p": "top_p",
            "max_tokens": "max_tokens",
            "max_retries": "max_retries",
        },
        # sent to the provider as extra request parameters
        "model_kwargs": ["frequency_penalty", "presence_penalty"],
    },
    "groq": {
        "display_name": "Langfuse Chat Model (Groq)",
        "description": "Groq Chat Model with Langfuse Tracing",
        "litellm_prefix": "groq",
        "models_url": "https://api.groq.com/openai/v1/models",
        "option_defaults": {
            "temperature": 0.7,
            "max_completion_tokens": None,
        },
        "option_fields": {
            "temperature": "temperature",
            "max_completion_tokens": "max_tokens",
        },
        "model_kwargs": [],
        "fixed_fields": {"max_retries": 2},
    },
    "google": {
        "display_name": "Langfuse Chat Model (Google Gemini)",
        "description": "Google Gemini Chat Model with Langfuse Tracing",
        "litellm_prefix": "gemini",
        "models_url": "https://generativelanguage.googleapis.com/v1beta/models",
        "option_defaults": {
            "temperature": 0.7,
            "maxOutputTokens": 2048,
            "topK": 40,
            "topP": 0.95,
        },
        "option_fields": {
            "temperature": "temperature",
            "maxOutputTokens": "max_tokens",
            "topK": "top_k",
            "topP": "top_p",
        },
        "model_kwargs": [],
    },
}


def get_provider(provider: str) -> dict:
    """Get a provider definition, raising UnknownProviderError if missing."""
    if provider not in PROVIDERS:
        raise UnknownProviderError(provider)
    return PROVIDERS[provider]
