import logging
import sys
from collections import OrderedDict
from contextlib import asynccontextmanager
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Optional

import httpx
from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

SRC_DIR = Path(__file__).resolve().parent
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

SERVICES_ROOT = SRC_DIR.parents[1]
if str(SERVICES_ROOT) not in sys.path:
    sys.path.insert(0, str(SERVICES_ROOT))

from assistant_client import AssistantClient
from assistant_session import AssistantSession
from http_client import ResilientHttpClient
from local_extractor import parse
from locales import resolve_locale
from middleware.rate_limit import SimpleRateLimiter, build_default_rate_limiter
from persistence import (
    TRANSACTIONS_TABLE,
    InMemoryTransactionStore,
    PersistenceError,
    PostgrestTransactionStore,
    TransactionStore,
)
from quota_client import QuotaClient
from recurring_rules import find_recurring_candidates
from shared.assistant_settings import SUPPORTED_TONES, AssistantSettings, load_assistant_settings
from shared.observability import bind_request_context, ensure_request_id, reset_request_context, setup_telemetry

logger = logging.getLogger(__name__)

SERVICE_NAME = "transaction-assistant"
USER_ID_HEADER = "x-user-id"
MAX_SESSIONS = 1000
HISTORY_LIMIT = 500


class ParsePayload(BaseModel):
    text: str
    locale: Optional[str] = None


class ChatPayload(BaseModel):
    message: str
    locale: Optional[str] = None
    tone: Optional[str] = None


def error_response(status_code: int, error_code: str, details: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error_code, "details": details},
    )


def create_app(
    *,
    settings: AssistantSettings | None = None,
    store: TransactionStore | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    rate_limiter: SimpleRateLimiter | None = None,
    max_sessions: int = MAX_SESSIONS,
) -> FastAPI:
    """
    Build the assistant API.

    The lifespan is the composition root: it loads settings, opens the shared
    HTTP client and picks the store (PostgREST when `STORE_API_URL` is set,
    in-memory otherwise). Tests pass `transport` to stub every upstream call.
    At most `max_sessions` conversations are kept; the least recently used
    idle one is dropped to make room.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        resolved = settings or load_assistant_settings()
        http = ResilientHttpClient(timeout=resolved.timeout_seconds, transport=transport)
        owned_store: PostgrestTransactionStore | None = None
        if store is not None:
            app.state.store = store
        elif resolved.store is not None:
            owned_store = PostgrestTransactionStore(resolved.store.api_url, resolved.store.api_key)
            app.state.store = owned_store
        else:
            app.state.store = InMemoryTransactionStore()

        app.state.settings = resolved
        app.state.quota = QuotaClient(http, resolved.quota_url)
        app.state.assistant = AssistantClient(http, resolved.assistant_url)
        app.state.sessions = OrderedDict()
        app.state.max_sessions = max_sessions
        logger.info(
            {
                "event": "assistant_startup",
                "assistant_url": resolved.assistant_url,
                "store": type(app.state.store).__name__,
                "timeout_seconds": resolved.timeout_seconds,
            }
        )
        try:
            yield
        finally:
            for session in app.state.sessions.values():
                session.stop()
            await http.aclose()
            if owned_store is not None:
                await owned_store.aclose()

    app = FastAPI(title="Transaction Assistant", lifespan=lifespan)
    setup_telemetry(app, service_name=SERVICE_NAME)
    app.state.rate_limiter = rate_limiter or build_default_rate_limiter()

    @app.middleware("http")
    async def rate_limit_middleware(request: Request, call_next):
        limiter: SimpleRateLimiter = app.state.rate_limiter
        client_id = request.headers.get(USER_ID_HEADER) or _client_ip(request) or "unknown"
        allowed, retry_after = await limiter.allow(client_id)
        if allowed:
            return await call_next(request)

        logger.warning(
            {
                "event": "rate_limited",
                "request_id": getattr(request.state, "request_id", None),
                "client_id": client_id,
                "retry_after_seconds": retry_after,
            }
        )
        response = error_response(429, "rate_limit_exceeded", "Too many requests. Please retry shortly.")
        response.headers["Retry-After"] = str(max(1, int(retry_after or 1)))
        return response

    # Registered last so it runs first and the rate limiter sees the request id.
    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        request_id = ensure_request_id(request)
        token = bind_request_context(request_id)
        try:
            response = await call_next(request)
            response.headers.setdefault("x-request-id", request_id)
            return response
        finally:
            reset_request_context(token)

    @app.get("/health")
    def health_check() -> dict:
        return {"status": "ok", "service": SERVICE_NAME}

    @app.post("/parse", response_model=None)
    def parse_text(payload: ParsePayload) -> Dict[str, Any] | JSONResponse:
        """Runs the local extractor only; no quota, no network."""
        if not payload.text.strip():
            return error_response(400, "text_required", "Text to parse is required.")
        return parse(payload.text, payload.locale or app.state.settings.default_locale).to_dict()

    @app.post("/chat", response_model=None)
    async def chat(
        payload: ChatPayload,
        request: Request,
        authorization: Optional[str] = Header(default=None),
        x_user_id: Optional[str] = Header(default=None),
    ) -> Dict[str, Any] | JSONResponse:
        """Submits one message to the user's assistant session and returns the updated log."""
        request_id = ensure_request_id(request)
        token = _bearer_token(authorization)
        if not token or not x_user_id:
            return error_response(401, "unauthorized", "Please sign in to use the assistant.")
        if not payload.message.strip():
            return error_response(400, "message_required", "Message must not be empty.")
        if payload.tone is not None and payload.tone not in SUPPORTED_TONES:
            return error_response(400, "unsupported_tone", f"Unsupported tone '{payload.tone}'.")

        session = _session_for(app, x_user_id, token, payload)
        if session.is_rate_limited:
            response = error_response(429, "assistant_rate_limited", "Assistant is cooling down. Please retry shortly.")
            response.headers["Retry-After"] = str(max(1, round(session.cooldown_remaining)))
            return response

        outcome = await session.submit(payload.message)
        logger.info(
            {
                "event": "chat_completed",
                "request_id": request_id,
                "user_id": x_user_id,
                "outcome": outcome.value,
            }
        )
        return {
            "outcome": outcome.value,
            "messages": [message.to_dict() for message in session.messages],
            "rate_limited": session.is_rate_limited,
        }

    @app.post("/chat/stop", response_model=None)
    async def stop_chat(x_user_id: Optional[str] = Header(default=None)) -> Dict[str, Any] | JSONResponse:
        if not x_user_id:
            return error_response(401, "unauthorized", "Please sign in to use the assistant.")
        session: AssistantSession | None = app.state.sessions.get(x_user_id)
        return {"stopped": session.stop() if session is not None else False}

    @app.get("/recurring/candidates", response_model=None)
    async def recurring_candidates(
        window_days: int = 120,
        x_user_id: Optional[str] = Header(default=None),
    ) -> Dict[str, Any] | JSONResponse:
        """Lists expenses that repeat weekly or monthly in the user's recent history."""
        if not x_user_id:
            return error_response(401, "unauthorized", "Please sign in to use the assistant.")
        store: TransactionStore = app.state.store
        try:
            rows = await store.select(
                TRANSACTIONS_TABLE,
                filters={"user_id": x_user_id},
                order_by="created_at",
                descending=True,
                limit=HISTORY_LIMIT,
            )
        except PersistenceError as exc:
            logger.warning({"event": "recurring_history_unavailable", "user_id": x_user_id, "error": str(exc)})
            return error_response(503, "store_unavailable", "Transaction history is unavailable.")

        candidates = find_recurring_candidates(rows, window_days)
        logger.info({"event": "recurring_candidates_found", "user_id": x_user_id, "count": len(candidates)})
        return {"candidates": [asdict(candidate) for candidate in candidates]}

    return app


def _session_for(app: FastAPI, user_id: str, token: str, payload: ChatPayload) -> AssistantSession:
    settings: AssistantSettings = app.state.settings
    sessions: OrderedDict[str, AssistantSession] = app.state.sessions
    session = sessions.get(user_id)
    if session is None:
        _evict_idle_sessions(sessions, app.state.max_sessions - 1)
        session = AssistantSession(
            user_id=user_id,
            token=token,
            quota=app.state.quota,
            assistant=app.state.assistant,
            store=app.state.store,
            locale=payload.locale or settings.default_locale,
            tone=payload.tone or settings.tone,
            timeout_seconds=settings.timeout_seconds,
            default_cooldown_seconds=settings.default_cooldown_seconds,
        )
        sessions[user_id] = session
        return session

    sessions.move_to_end(user_id)
    session.token = token
    if payload.locale:
        session.locale = resolve_locale(payload.locale)
    if payload.tone:
        session.tone = payload.tone
    return session


def _evict_idle_sessions(sessions: OrderedDict[str, AssistantSession], keep: int) -> None:
    # Oldest first; sessions with a request in flight are never dropped.
    for user_id in list(sessions):
        if len(sessions) <= max(0, keep):
            return
        session = sessions[user_id]
        if session.is_loading:
            continue
        session.stop()
        del sessions[user_id]
        logger.info({"event": "assistant_session_evicted", "user_id": user_id})


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


def _client_ip(request: Request) -> str | None:
    client = request.client
    if client:
        return client.host
    return None


app = create_app()
