"""
UI message bridge over HTTP.

The UI surface runs in an isolated context and only exchanges messages with
the core. This adapter carries those messages over HTTP:

- POST /messages  {action, payload} -> {status, logMessage?, toastMessage?}
- GET  /health    -> {"status": "ok"}

Command errors are results, not HTTP errors: an unknown action still answers
200 with status "error". Malformed bodies are rejected by FastAPI with 422.
"""

import logging

from fastapi import APIRouter, FastAPI, Request

from .commands import AnnotationSession, UIMessage
from .messenger import CommandResult

logger = logging.getLogger(__name__)

router = APIRouter(tags=["messages"])


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.post("/messages", response_model=CommandResult, response_model_by_alias=True, response_model_exclude_none=True)
async def post_message(message: UIMessage, request: Request) -> CommandResult:
    """
    Dispatch one UI message to the page session.

    Returns:
        The command result with camelCase keys
    """
    session: AnnotationSession = request.app.state.session
    logger.debug(f"Received {message.action} message")
    return await session.dispatch(message)


def create_app(session: AnnotationSession) -> FastAPI:
    """
    Build the bridge application for one session.

    Args:
        session: Annotation session receiving every message

    Returns:
        FastAPI app with the session stored on app.state
    """
    app = FastAPI(title="Accessmark Bridge", version="0.1.0")
    app.state.session = session
    app.include_router(router)
    return app
