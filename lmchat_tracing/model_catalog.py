"""
Provider model catalog with circuit breaker protection.
Lists the models a provider offers so a node can show them as options.
"""

import logging
import re

import httpx
from pydantic import BaseModel

from lmchat_tracing.circuit_breaker import CircuitBreaker
from lmchat_tracing.config import settings
from lmchat_tracing.observability import trace_span
from lmchat_tracing.providers import PROVIDERS, get_provider

logger = logging.getLogger(__name__)

# Legacy OpenAI snapshots that can no longer be called.
OPENAI_RETIRED_MODELS = re.compile(r"^gpt-3\.5-turbo-(0613|16k-0613)$")


class ModelOption(BaseModel):
    """One selectable model."""

    name: str
    value: str


class ModelCatalogClient:
    """
    Model catalog client with one circuit breaker per provider.
    Returns an empty list if a provider is unavailable.
    """

    def __init__(self, http_client: httpx.Client | None = None):
        """
        Initialize the catalog client.

        Args:
            http_client: Optional preconfigured client (tests pass one with
                a mock transport)
        """
        self.http_client = http_client or httpx.Client(timeout=settings.model_catalog_timeout)

        self.circuit_breakers = {
            provider: CircuitBreaker(
                failure_threshold=settings.circuit_breaker_failure_threshold,
                timeout=settings.circuit_breaker_timeout,
                name=f"{provider}ModelCatalog",
            )
            for provider in PROVIDERS
        }

    def list_models(self, provider: str, api_key: str | None) -> list[ModelOption]:
        """
        List models for a provider.

        Args:
            provider: Provider key (openai, groq, google)
            api_key: Provider API key

        Returns:
            Model options, or an empty list when listing fails

        Raises:
            UnknownProviderError: If the provider is not defined
        """
        get_provider(provider)

        try:
            with trace_span("list_models", provider=provider):
                return self.circuit_breakers[provider].call(self._fetch_models, provider, api_key)
        except Exception as e:
            logger.error(f"Listing {provider} models failed: {e}")
            return []

    def _fetch_models(self, provider: str, api_key: str | None) -> list[ModelOption]:
        url = get_provider(provider)["models_url"]

        if provider == "google":
            response = self.http_client.get(url, params={"key": api_key or ""})
        else:
            response = self.http_client.get(url, headers={"Authorization": f"Bearer {api_key}"})
        response.raise_for_status()
        body = response.json()

        if provider == "google":
            return self._parse_gemini_models(body)
        return self._parse_openai_compatible_models(provider, body)

    @staticmethod
    def _parse_openai_compatible_models(provider: str, body: dict) -> list[ModelOption]:
        data = body.get("data")
        if not data:
            return []

        ids = [m["id"] for m in data]
        if provider == "openai":
            ids = [
                model_id
                for model_id in ids
                if "gpt-3.5-turbo-0301" not in model_id
                and not OPENAI_RETIRED_MODELS.match(model_id)
            ]
        return [ModelOption(name=model_id, value=model_id) for model_id in ids]

    @staticmethod
    def _parse_gemini_models(body: dict) -> list[ModelOption]:
        models = body.get("models")
        if not models:
            return []

        options = []
        for m in models:
            if "models/gemini" not in m["name"]:
                continue
            value = m["name"].replace("models/", "", 1)
            display_name = m.get("displayName")
            name = f"{display_name} ({value})" if display_name else value
            options.append(ModelOption(name=name, value=value))
        return options

    def get_circuit_breaker_states(self) -> dict[str, dict]:
        """Get circuit breaker states for monitoring."""
        return {provider: cb.get_state() for provider, cb in self.circuit_breakers.items()}

    def close(self):
        """Close the HTTP client."""
        self.http_client.close()
        logger.info("Model catalog client closed")


# Global catalog client instance
model_catalog = ModelCatalogClient()
