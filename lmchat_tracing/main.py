"""
FastAPI application serving the Langfuse-traced chat model nodes.
Provides REST API endpoints for model invocation, execution logs and monitoring.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from lmchat_tracing.chat_models import LangfuseMetadata, ProviderCredentials, supply_chat_model
from lmchat_tracing.config import settings
from lmchat_tracing.execution_log import ExecutionStore
from lmchat_tracing.model_catalog import ModelOption, model_catalog
from lmchat_tracing.observability import trace_span
from lmchat_tracing.providers import PROVIDERS, UnknownProviderError, get_provider

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

execution_store = ExecutionStore(
    max_executions=settings.max_executions, ttl_seconds=settings.execution_ttl_seconds
)
unmatched_completions = 0


# Pydantic models for API
class ChatMessage(BaseModel):
    role: str = Field("user", description="Message role (system, user, assistant)")
    content: str = Field(..., description="Message text")


class ChatRequest(BaseModel):
    """Request model for chat endpoint."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "provider": "openai",
                "model": "gpt-4o-mini",
                "messages": [{"role": "user", "content": "hello"}],
                "options": {"temperature": 0.2},
                "langfuse": {"session_id": "session_123", "custom_metadata": '{"project": "demo"}'},
            }
        }
    )

    provider: str = Field(..., description="Provider key: openai, groq or google")
    model: str = Field(..., description="Provider model id")
    messages: list[ChatMessage] = Field(..., min_length=1)
    options: dict[str, Any] = Field(default_factory=dict, description="Provider options")
    langfuse: LangfuseMetadata = Field(default_factory=LangfuseMetadata)
    credentials: ProviderCredentials | None = Field(
        None, description="Overrides the keys configured in the environment"
    )
    execution_id: str | None = Field(None, description="Existing execution to append runs to")
    node_name: str | None = None
    parent_run_index: int | None = Field(None, ge=0)


class ChatResponse(BaseModel):
    """Response model for chat endpoint."""

    response: str
    execution_id: str
    run_index: int | None = None


class ModelsRequest(BaseModel):
    api_key: str | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    environment: str
    model_catalog_circuit_breakers: dict


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    logger.info("Starting Langfuse chat model API")
    logger.info(f"Environment: {settings.environment}")
    if not (settings.langfuse_public_key and settings.langfuse_secret_key):
        logger.warning("LANGFUSE_PUBLIC_KEY/LANGFUSE_SECRET_KEY not set; requests must carry them")

    yield

    logger.info("Shutting down Langfuse chat model API")
    model_catalog.close()


# Create FastAPI app
app = FastAPI(
    title="Langfuse Chat Model API",
    description="Chat models traced to Langfuse and correlated in a per-run execution log",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _require_provider(provider: str) -> dict:
    try:
        return get_provider(provider)
    except UnknownProviderError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown provider: {provider}"
        ) from e


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {"message": "Langfuse Chat Model API", "version": "1.0.0", "docs": "/docs"}


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Service status and model catalog circuit breaker states."""
    return HealthResponse(
        status="healthy",
        environment=settings.environment,
        model_catalog_circuit_breakers=model_catalog.get_circuit_breaker_states(),
    )


@app.get("/providers", tags=["Models"])
async def list_providers():
    """Provider descriptors with their option defaults."""
    return {
        key: {
            "display_name": p["display_name"],
            "description": p["description"],
            "option_defaults": p["option_defaults"],
        }
        for key, p in PROVIDERS.items()
    }


@app.post("/providers/{provider}/models", response_model=list[ModelOption], tags=["Models"])
def list_models(provider: str, request: ModelsRequest):
    """
    List the models a provider offers.
    Falls back to the configured key; returns [] when the provider is unreachable.
    """
    _require_provider(provider)
    return model_catalog.list_models(provider, request.api_key or settings.provider_api_key(provider))


@app.post("/chat", response_model=ChatResponse, tags=["Chat"])
async def chat(request: ChatRequest):
    """
    Invoke a traced chat model.

    The call is recorded in the execution log (``/executions/{execution_id}``)
    and traced to Langfuse. Passing the returned ``execution_id`` back appends
    further runs to the same execution.
    """
    global unmatched_completions

    definition = _require_provider(request.provider)
    execution = execution_store.get_or_create(
        request.execution_id, request.node_name or definition["display_name"]
    )

    supplied = supply_chat_model(
        request.provider,
        request.model,
        execution,
        credentials=request.credentials,
        options=request.options,
        langfuse=request.langfuse,
        parent_run_index=request.parent_run_index,
    )

    try:
        logger.info(f"Chat request: provider={request.provider} execution={execution.execution_id}")
        with trace_span("chat", provider=request.provider, model=request.model):
            message = await supplied.model.ainvoke([m.model_dump() for m in request.messages])

    except Exception as e:
        logger.error(f"Error in /chat endpoint: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=(
                "The model call failed. See "
                f"/executions/{execution.execution_id} for the recorded error."
            ),
        ) from e

    finally:
        unmatched_completions += supplied.run_tracing.unmatched_completions

    content = message.content
    return ChatResponse(
        response=content if isinstance(content, str) else str(content),
        execution_id=execution.execution_id,
        run_index=supplied.run_tracing.last_run_index,
    )


@app.get("/executions/{execution_id}", tags=["Executions"])
async def get_execution(execution_id: str):
    """Per-run view of a node execution: inputs, outputs, errors and AI events."""
    execution = execution_store.get(execution_id)
    if execution is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Execution not found")
    return execution.to_dict()


@app.delete("/executions/{execution_id}", tags=["Executions"])
async def delete_execution(execution_id: str):
    """Drop an execution log."""
    if not execution_store.delete(execution_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Execution not found")
    return {"message": f"Execution {execution_id} deleted", "execution_id": execution_id}


@app.get("/ready")
def ready():
    return {"status": "ready"}


@app.get("/metrics", tags=["Monitoring"])
async def metrics():
    """
    Monitoring counters.

    Returns:
    - Retained execution logs
    - Completions that arrived without a recorded start
    - Model catalog circuit breaker states
    """
    return {
        "executions": len(execution_store),
        "unmatched_completions": unmatched_completions,
        "circuit_breakers": model_catalog.get_circuit_breaker_states(),
        "environment": settings.environment,
    }


if __name__ == "__main__":
    uvicorn.run(
        "lmchat_tracing.main:app",
        host="0.0.0.0",
        port=int(os.environ.get("PORT", 8080)),
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
