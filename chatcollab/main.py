"""FastAPI application entry point."""

from datetime import datetime
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker

from chatcollab import __version__
from chatcollab.api import chats, collaboration, memory, presence, sharing
from chatcollab.core.config import Settings, get_settings
from chatcollab.core.database import SessionLocal, init_db
from chatcollab.core.errors import ChatServiceError
from chatcollab.core.logging import configure_logging, get_logger
from chatcollab.models import utcnow
from chatcollab.services.completion import CompletionProvider, OpenAICompletionProvider
from chatcollab.services.memory import StoredMemoryProvider
from chatcollab.services.orchestrator import ChatSessionOrchestrator
from chatcollab.services.presence import PresenceTracker

logger = get_logger(__name__)


def _error_body(code: str, message: str, details: Optional[dict] = None) -> dict:
    return {"error": {"code": code, "message": message, "details": details or {}}}


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    completion_provider: Optional[CompletionProvider] = None,
    clock: Callable[[], datetime] = utcnow,
    memory_store: Optional[StoredMemoryProvider] = None,
) -> FastAPI:
    settings = settings or get_settings()
    session_factory = session_factory or SessionLocal
    configure_logging(settings.log_level, settings.log_json)

    if completion_provider is None:
        completion_provider = OpenAICompletionProvider(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            temperature=settings.temperature,
            max_tokens=settings.completion_max_tokens,
        )

    app = FastAPI(title=settings.app_name, version=__version__, debug=settings.debug)
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.memory = memory_store or StoredMemoryProvider(clock)
    app.state.orchestrator = ChatSessionOrchestrator(
        session_factory=session_factory,
        completion_provider=completion_provider,
        presence=PresenceTracker(settings.presence_window_seconds),
        settings=settings,
        clock=clock,
        memory=app.state.memory,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(chats.router)
    app.include_router(sharing.router)
    app.include_router(collaboration.router)
    app.include_router(presence.router)
    app.include_router(memory.router)

    @app.exception_handler(ChatServiceError)
    async def service_error_handler(request: Request, exc: ChatServiceError):
        if exc.status_code >= 500:
            logger.warning("request_failed", path=request.url.path, code=exc.error_code, error=exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.error_code, exc.message, exc.details),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content=_error_body("validation_error", "Invalid request", {"errors": jsonable_encoder(exc.errors())}),
        )

    @app.on_event("startup")
    def startup_event():
        init_db(session_factory.kw.get("bind"))

    @app.get("/")
    def root():
        return {"message": f"{settings.app_name} is running", "version": __version__}

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
