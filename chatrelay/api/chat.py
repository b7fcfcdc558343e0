"""
api/chat.py

Endpoints:
  - POST /api/chat: Runs one conversation turn (anti-abuse gate, provider call,
                    tool dispatch, follow-up) and returns the appended turns.
                    Other verbs on this path are answered with 405 by routing.
  - GET /health: Liveness probe.
"""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from chatrelay.config.logging import get_logger
from chatrelay.service import ChatRequest, ChatService

logger = get_logger(__name__)

router = APIRouter()


def _service(request: Request) -> ChatService:
    return request.app.state.chat_service


@router.post("/api/chat")
async def handle_chat(body: ChatRequest, request: Request) -> JSONResponse:
    """
    Process one chat turn.

    Args:
        body: Parsed ChatRequest (history, model, generationOptions, task, antiAbuseToken)
        request: Raw request, used for the client address

    Returns:
        JSONResponse with ``turns``, ``provider``, ``model`` and, for the
        chat_with_title task, ``title`` when one could be generated.

    Raises:
        ChatRelayError: Rendered by the exception handler registered in create_app()
    """
    remote_ip = request.client.host if request.client else None
    logger.info(
        f"[handle_chat] {len(body.history)} turn(s), model={body.model or 'default'}, task={body.task}"
    )

    response = await _service(request).handle(body, remote_ip=remote_ip)
    return JSONResponse(response.model_dump(mode="json", by_alias=True, exclude_none=True))


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}
