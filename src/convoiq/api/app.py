"""
Core API backend for ConvoIQ.

This module exposes the agent over HTTP for the web and terminal clients:
- **GET /health**       - liveness probe for health checks.
- **POST /agent/tools** - names of the tools a run with the given edit modes would offer.
- **POST /RunAgent**    - runs the component agent and streams its events as ``text/event-stream``.

Collaborators (model client, transcript store, component tester) are built once per process by
:func:`create_app` and shared by reference with every run.
"""

import logging
from typing import AsyncIterator

from fastapi import (
    FastAPI,
    Request,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from convoiq.agent.agent_loop import (
    AgentDependencies,
    create_agent_loop,
)
from convoiq.agent.model_client import load_model_client
from convoiq.api.models import (
    RunAgentRequest,
    ToolsResponse,
)
from convoiq.collaborators.tester import (
    ComponentTester,
    LLMComponentTester,
    PlaceholderComponentTester,
)
from convoiq.collaborators.transcripts import HttpTranscriptStore
from convoiq.common import (
    AnsiColors,
    colored_print,
)
from convoiq.config import Settings
from convoiq.core.events import EventEmitter
from convoiq.core.schema import EditModes
from convoiq.tools import get_agent_tools

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------
def build_dependencies(settings: Settings) -> AgentDependencies:
    """Construct the process-wide collaborators from *settings*."""
    model_client = load_model_client(settings)
    transcripts = HttpTranscriptStore(settings.STORE_URL, timeout=settings.STORE_TIMEOUT_SECONDS)

    tester: ComponentTester
    if settings.COMPONENT_TESTER.lower() == "llm":
        tester = LLMComponentTester(model_client, transcripts)
    elif settings.COMPONENT_TESTER.lower() == "placeholder":
        tester = PlaceholderComponentTester()
    else:
        raise ValueError(f"Component tester '{settings.COMPONENT_TESTER}' is not supported.")

    return AgentDependencies(
        model_client=model_client,
        transcripts=transcripts,
        tester=tester,
        max_iterations=settings.AGENT_MAX_ITERATIONS,
        chunk_timeout=settings.MODEL_TIMEOUT_SECONDS or None,
        default_transcript_chars=settings.TRANSCRIPT_DEFAULT_MAX_CHARS,
    )


async def stream_agent_run(deps: AgentDependencies, req: RunAgentRequest) -> AsyncIterator[str]:
    """Run the agent for *req* and yield its events as SSE frames."""
    logger.info(
        "RunAgent: component=%s conversation=%s modes=%s",
        req.component_id,
        req.conversation_id,
        req.edit_modes.enabled_labels(),
    )
    terminated = False
    try:
        loop = await create_agent_loop(
            deps,
            user_prompt=req.user_prompt,
            current_state=req.current_state,
            edit_modes=req.edit_modes,
            conversation_id=req.conversation_id,
            component_title=req.component_title,
            conversation_title=req.conversation_title,
        )
        async for event in loop.run():
            terminated = event.is_terminal
            yield event.to_sse()
    except Exception as exc:  # pylint: disable=broad-except
        logger.exception("Agent run failed")
        if not terminated:
            yield EventEmitter().error(str(exc) or exc.__class__.__name__).to_sse()


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------
def create_app(settings: Settings | None = None, deps: AgentDependencies | None = None) -> FastAPI:
    """
    Build the FastAPI application.

    Parameters
    ----------
    settings:
        Application settings; read from the environment when omitted.
    deps:
        Pre-built collaborators (tests inject fakes here); built from *settings* when omitted.
    """
    settings = settings or Settings()
    app = FastAPI(
        title="ConvoIQ Agent API",
        version="0.1.0",
        description="Agent that refines conversation-analysis components",
    )
    app.state.settings = settings
    app.state.deps = deps or build_dependencies(settings)

    # Add CORS middleware to allow requests from the web UI
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -----------------------------------------------------------------------
    # Routes
    # -----------------------------------------------------------------------
    @app.get("/health", summary="Health check")
    async def health() -> dict[str, str]:
        """Return a simple liveness payload."""
        return {"status": "ok"}

    @app.post("/agent/tools", response_model=ToolsResponse, summary="Tools for edit modes")
    async def agent_tools(edit_modes: EditModes) -> ToolsResponse:
        """List the tools a run with *edit_modes* would offer to the model."""
        return ToolsResponse(tools=[tool.name for tool in get_agent_tools(edit_modes)])

    @app.post("/RunAgent", summary="Run the component agent (streaming)")
    async def run_agent(req: RunAgentRequest, request: Request) -> StreamingResponse:
        """Stream the agent run for *req* as server-sent events."""
        run_deps: AgentDependencies = request.app.state.deps
        return StreamingResponse(
            stream_agent_run(run_deps, req),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    @app.get("/", summary="API root")
    async def root() -> dict[str, str]:
        """Return a simple welcome message."""
        return {"message": "Welcome to the ConvoIQ agent API! Use /docs for API documentation."}

    return app


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    settings: Settings | None = None,
    host: str = "0.0.0.0",
    port: int = 8000,
    reload: bool = False,
    log_level: str = "info",
) -> None:
    """Start a uvicorn server hosting the app built by :func:`create_app`.

    Parameters
    ----------
    settings:
        Settings for the app.  Ignored with *reload*, where the worker process reads its own
        settings from the environment.
    host, port:
        Bind address for the HTTP server.
    reload:
        If *True*, enable auto-reload (useful in development).
    log_level:
        Uvicorn logging level.
    """

    # Lazy import - keeps uvicorn an optional dependency at pkg-import time
    import uvicorn  # pylint: disable=import-outside-toplevel

    logger.info(
        "Starting ConvoIQ API at %s:%d (reload=%s, log_level=%s)", host, port, reload, log_level
    )
    colored_print(f"ConvoIQ API is running at http://localhost:{port}.", AnsiColors.GREEN)
    colored_print(f"Visit http://localhost:{port}/docs for API documentation.", AnsiColors.BLUE)

    if reload:
        # Reload needs an import string; the factory builds the app in the worker
        uvicorn.run(
            "convoiq.api.app:create_app",
            factory=True,
            host=host,
            port=port,
            reload=True,
            log_level=log_level,
        )
    else:
        uvicorn.run(create_app(settings), host=host, port=port, log_level=log_level)


# ---------------------------------------------------------------------------
# `python -m convoiq.api.app` helper
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    run_api(reload=True)
