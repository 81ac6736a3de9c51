import logging
from contextlib import asynccontextmanager
from typing import Annotated, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, FastAPI, Header, Query, Request, Response, status
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from smsrelay.config import Settings, get_settings
from smsrelay.egress import send_outbound
from smsrelay.errors import RelayError, SignatureValidationError, ValidationError
from smsrelay.ingress import build_ack, build_inbound_message, persist_inbound
from smsrelay.logging_utils import RequestLoggingMiddleware, log_request_data, setup_logging
from smsrelay.metrics import get_metrics, get_metrics_content_type, record_inbound_outcome
from smsrelay.projections import get_thread, list_contacts, recent_messages
from smsrelay.schemas import (
    ContactsResponse,
    DebugSeedResponse,
    ErrorResponse,
    HealthResponse,
    MessagesResponse,
    SendRequest,
    SendResponse,
    StorageInfo,
)
from smsrelay.storage import MessageStore, create_store
from smsrelay.utils import canonical_webhook_url, verify_twilio_signature

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: build the message store unless one was injected.
    Shutdown: release it.
    """
    if app.state.store is None:
        app.state.store = create_store(app.state.settings)
    yield
    app.state.store.close()
    logger.info("Message store closed")


def get_store(request: Request) -> MessageStore:
    return request.app.state.store


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


router = APIRouter()
debug_router = APIRouter(prefix="/debug", tags=["debug"])


# =============================================================================
# Health Check Routes
# =============================================================================

@router.get("/health", response_model=HealthResponse)
async def health(store: MessageStore = Depends(get_store)) -> HealthResponse:
    """Process liveness plus the active storage backend."""
    return HealthResponse(
        status="ok",
        storage=StorageInfo(mode=store.mode, location=store.location),
    )


@router.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """
    Liveness probe - always returns 200 once the app is running.
    """
    return HealthResponse(status="ok")


@router.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response, store: MessageStore = Depends(get_store)) -> HealthResponse:
    """
    Readiness probe - returns 200 only if the message store is usable,
    503 (Service Unavailable) otherwise.
    """
    if not store.ping():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(ok=False, status="not_ready", reason="Message store not reachable")
    return HealthResponse(status="ready")


# =============================================================================
# Inbound Webhook Route
# =============================================================================

@router.post(
    "/sms",
    response_class=Response,
    responses={
        200: {"content": {"text/xml": {}}, "description": "TwiML acknowledgment"},
        403: {"model": ErrorResponse, "description": "Invalid signature"},
    },
)
async def inbound_sms(
    request: Request,
    background_tasks: BackgroundTasks,
    x_twilio_signature: Annotated[Optional[str], Header(alias="X-Twilio-Signature")] = None,
    store: MessageStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
) -> Response:
    """
    Receive an inbound SMS/MMS from Twilio.

    - Validates X-Twilio-Signature when WEBHOOK_SECRET is set
    - Stores the message after the response is produced; storage failures
      are logged and never change the acknowledgment
    - Replies with TwiML, carrying AUTO_REPLY_TEXT when AUTO_REPLY_ENABLED
    """
    form = await request.form()
    params = {key: value for key, value in form.items() if isinstance(value, str)}
    logger.info("Inbound webhook received")

    if settings.WEBHOOK_SECRET:
        url = canonical_webhook_url(request, settings.PUBLIC_BASE_URL)
        if not verify_twilio_signature(settings.WEBHOOK_SECRET, url, params, x_twilio_signature):
            record_inbound_outcome("invalid_signature")
            log_request_data(request, result="invalid_signature")
            raise SignatureValidationError("invalid signature")

    message = build_inbound_message(params)
    if message is None:
        record_inbound_outcome("invalid_payload")
        log_request_data(request, result="invalid_payload")
    else:
        background_tasks.add_task(persist_inbound, store, message)
        log_request_data(request, message_id=message.id, result="accepted")

    reply = settings.AUTO_REPLY_TEXT if settings.AUTO_REPLY_ENABLED else None
    return Response(content=build_ack(reply), media_type="text/xml")


# =============================================================================
# UI API Routes
# =============================================================================

@router.get("/api/contacts", response_model=ContactsResponse)
async def contacts(store: MessageStore = Depends(get_store)) -> ContactsResponse:
    """Every phone number with at least one message, sorted ascending."""
    return ContactsResponse(contacts=list_contacts(store))


@router.get("/api/messages", response_model=MessagesResponse)
async def messages(
    phone: Annotated[Optional[str], Query(description="Contact whose thread to return")] = None,
    limit: Annotated[
        Optional[int], Query(ge=1, le=2000, description="How many recent messages when no phone is given")
    ] = None,
    store: MessageStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
) -> MessagesResponse:
    """
    Messages in ascending time order.

    - phone given: the full thread with that contact ([] when blank or unknown)
    - phone omitted: the most recent `limit` messages across all contacts
    """
    if phone is None:
        return MessagesResponse(messages=recent_messages(store, limit or settings.RECENT_MESSAGES_LIMIT))
    return MessagesResponse(messages=get_thread(store, phone))


@router.post(
    "/api/send",
    response_model=SendResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Missing destination or body"},
        500: {"model": ErrorResponse, "description": "Provider not configured"},
        502: {"model": ErrorResponse, "description": "Provider rejected the send"},
    },
)
async def send(
    request: Request,
    payload: SendRequest,
    store: MessageStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
) -> SendResponse:
    """
    Send an SMS (or MMS with mediaUrl) and add it to the contact's thread.

    A send that succeeds at the provider but fails to be stored still
    returns 200, with recorded=false and a warning.
    """
    result = await send_outbound(
        store,
        settings,
        to=payload.to,
        body=payload.body,
        media_url=payload.media_url,
        sender=request.app.state.sender,
    )
    log_request_data(request, message_id=result.message.id, result="sent" if result.recorded else "not_recorded")
    return SendResponse(sid=result.sid, recorded=result.recorded, warning=result.warning)


# =============================================================================
# Debug Routes
# =============================================================================

@debug_router.get("/add", response_model=DebugSeedResponse)
async def debug_add(
    from_: Annotated[Optional[str], Query(alias="from")] = None,
    to: Optional[str] = None,
    body: Optional[str] = None,
    store: MessageStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
) -> DebugSeedResponse:
    """Add a fake inbound message, for trying the UI without a phone."""
    params = {
        "From": from_ or "+10000000000",
        "To": to or settings.TWILIO_PHONE_NUMBER or "+19999999999",
        "Body": body or "Test inbound message",
    }
    message = build_inbound_message(params, id_prefix="dbg")
    if message is None:
        raise ValidationError("Invalid debug message")
    store.put(message)
    return DebugSeedResponse(added=message, total=store.count())


# =============================================================================
# Metrics Route
# =============================================================================

@router.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus-style metrics."""
    return Response(content=get_metrics(), media_type=get_metrics_content_type())


# =============================================================================
# Web UI
# =============================================================================

class SinglePageFiles(StaticFiles):
    """Static files where any unknown path falls back to index.html."""

    async def get_response(self, path: str, scope) -> Response:
        try:
            return await super().get_response(path, scope)
        except StarletteHTTPException as e:
            if e.status_code != status.HTTP_404_NOT_FOUND:
                raise
            return await super().get_response("index.html", scope)


async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
    log_request_data(request, error=exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.message).model_dump(),
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the application.

    The message store is created in the lifespan unless app.state.store is
    set beforehand; app.state.sender replaces the Twilio client when set.
    """
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title="SMS Relay",
        description="Twilio SMS/MMS relay with a contact and thread API for a web UI",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = None
    app.state.sender = None

    app.add_middleware(RequestLoggingMiddleware)
    app.add_exception_handler(RelayError, relay_error_handler)

    app.include_router(router)
    if settings.debug_routes_enabled:
        logger.warning("Debug routes enabled")
        app.include_router(debug_router)

    # Mounted last so the API routes take precedence
    if settings.STATIC_DIR:
        app.mount("/", SinglePageFiles(directory=settings.STATIC_DIR, html=True), name="ui")

    return app


app = create_app()
