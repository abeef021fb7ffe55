import logging
from contextlib import asynccontextmanager
from pathlib import Path

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.responses import FileResponse, JSONResponse, StreamingResponse

from app.chat import ChatRelay, get_chat_relay
from app.config import get_settings, settings
from app.fanout import NotificationService, get_notification_service
from app.logging_utils import RequestLoggingMiddleware, log_submission_data, setup_logging
from app.metrics import (
    get_metrics,
    get_metrics_content_type,
    record_chat_request,
    record_message_submission,
)
from app.models import MessageStatus
from app.schemas import (
    ChatMessageResponse,
    ChatRequest,
    ErrorResponse,
    HealthResponse,
    MessageCreateRequest,
    SendMessageErrorResponse,
    SendMessageResponse,
)
from app.storage import MessageStore, build_store, get_store
from app.utils import get_visitor_info


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

CONTEXT_DOCUMENTS = ("ai_context_linkedin.json", "ai_context_resume.json")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: build the record store, the shared HTTP client, the
      notification service and the chat relay
    - Shutdown: close outbound clients
    """
    app_settings = get_settings()
    http_client = httpx.AsyncClient(timeout=app_settings.HTTP_TIMEOUT_SECONDS)
    app.state.http_client = http_client

    app.state.store = build_store(app_settings)
    app.state.notifier = NotificationService.from_settings(app_settings, http_client)
    app.state.chat_relay = ChatRelay(app_settings)

    configured = [name for name, ok in app.state.notifier.channel_status().items() if ok]
    logger.info(f"Startup complete, configured channels: {configured or 'none'}")
    yield

    await app.state.chat_relay.aclose()
    await http_client.aclose()


app = FastAPI(
    title="Portfolio API",
    description="Contact relay and AI assistant for an editor-themed portfolio",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse, response_model_exclude_none=True)
async def health_live() -> HealthResponse:
    """Liveness probe - always returns 200 once the app is running."""
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse, response_model_exclude_none=True)
async def health_ready(
    response: Response,
    store: MessageStore = Depends(get_store),
    notifier: NotificationService = Depends(get_notification_service),
) -> HealthResponse:
    """
    Readiness probe - returns 200 when the record store is usable.

    Channel configuration is reported but never blocks readiness: a
    channel without credentials simply fails its deliveries.
    """
    channels = notifier.channel_status()

    if not store.is_healthy():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Message store not reachable",
            channels=channels,
        )

    return HealthResponse(status="ready", channels=channels)


# =============================================================================
# Contact Relay Route
# =============================================================================

@app.post(
    "/api/messages",
    response_model=SendMessageResponse,
    responses={
        422: {"description": "Validation error"},
        500: {"model": SendMessageErrorResponse, "description": "No channel delivered the message"},
    }
)
async def send_message(
    request: Request,
    payload: MessageCreateRequest,
    store: MessageStore = Depends(get_store),
    notifier: NotificationService = Depends(get_notification_service),
):
    """
    Store a visitor message and fan it out to every notification channel.

    - 200 when at least one channel delivered it (partial failure is normal)
    - 500 with the per-channel results when none did
    """
    message = store.create_message(payload.content, payload.email, payload.phone)
    visitor = get_visitor_info(request)

    try:
        fanout = await notifier.send_to_all_platforms(payload.content, visitor)
    except Exception as e:
        logger.exception(f"Fan-out failed for message {message.id}")
        store.update_message_status(message.id, MessageStatus.FAILED)
        record_message_submission("error")
        log_submission_data(request, message_id=message.id, result="error")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Failed to send message", "details": str(e)},
        )

    results = list(fanout.results)

    if fanout.any_success:
        store.update_message_status(message.id, MessageStatus.SENT)
        result = MessageStatus.SENT.value
    else:
        store.update_message_status(message.id, MessageStatus.FAILED)
        result = MessageStatus.FAILED.value

    record_message_submission(result)
    log_submission_data(
        request,
        message_id=message.id,
        successful_count=fanout.successful_count,
        failed_count=fanout.failed_count,
        result=result,
    )

    if not fanout.any_success:
        body = SendMessageErrorResponse(
            error="Failed to send message to any platform",
            results=results,
            successful_count=0,
            failed_count=fanout.failed_count,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=body.model_dump(mode="json", by_alias=True),
        )

    return SendMessageResponse(
        message=f"Message sent successfully to {fanout.successful_count} platform(s)",
        results=results,
        successful_count=fanout.successful_count,
        failed_count=fanout.failed_count,
        id=message.id,
    )


# =============================================================================
# Chat Routes
# =============================================================================

@app.post(
    "/api/chat",
    responses={
        200: {"content": {"text/event-stream": {}}, "description": "Streamed answer"},
        400: {"model": ErrorResponse, "description": "Missing question or context"},
    }
)
async def chat(
    payload: ChatRequest,
    relay: ChatRelay = Depends(get_chat_relay),
) -> StreamingResponse:
    """
    Answer a question about the portfolio owner as a stream of
    `data: {"choices":[{"delta":{"content": ...}}]}` frames ending with
    `data: [DONE]`.
    """
    if not isinstance(payload.message, str) or not payload.message.strip():
        record_chat_request("rejected")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Message is required"
        )

    if payload.linkedin_context in (None, "") or payload.resume_context in (None, ""):
        record_chat_request("rejected")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Context data is required"
        )

    logger.info("Chat request accepted", extra={"question_length": len(payload.message)})

    return StreamingResponse(
        relay.stream(payload.message, payload.linkedin_context, payload.resume_context),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.get("/api/chat/history", response_model=list[ChatMessageResponse])
async def chat_history(store: MessageStore = Depends(get_store)) -> list[ChatMessageResponse]:
    """All stored chat records."""
    return [ChatMessageResponse.model_validate(record) for record in store.list_chat_messages()]


# =============================================================================
# Static Context Documents
# =============================================================================

def _context_document(name: str) -> FileResponse:
    path = Path(get_settings().CONTEXT_DIR) / name
    if not path.is_file():
        logger.warning(f"Context document missing: {path}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
    return FileResponse(path, media_type="application/json")


@app.get("/ai_context_linkedin.json", include_in_schema=False)
async def linkedin_context() -> FileResponse:
    return _context_document(CONTEXT_DOCUMENTS[0])


@app.get("/ai_context_resume.json", include_in_schema=False)
async def resume_context() -> FileResponse:
    return _context_document(CONTEXT_DOCUMENTS[1])


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """
    Expose Prometheus-style metrics.

    Includes HTTP request counts and latency, per-channel delivery
    outcomes, message submission results and chat relay outcomes.
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
