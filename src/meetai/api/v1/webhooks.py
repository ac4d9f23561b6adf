"""Provider webhook receiver.

Order of checks, all before any state is touched:
1. ``x-signature`` and ``x-api-key`` present, else 400
2. HMAC signature over the raw body, else 401 (payload not inspected)
3. Body is JSON, else 400

After that every request is acknowledged with 200: unsupported or
incomplete events and references to unknown meetings are no-ops, so the
provider never retries something that cannot succeed.
"""

from __future__ import annotations

import json
from typing import Any

import structlog
from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import JSONResponse

from src.meetai.config import get_settings
from src.meetai.core.monitoring import webhook_events_total
from src.meetai.webhooks.events import parse_event
from src.meetai.webhooks.verifier import verify_signature

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["webhooks"])

SIGNATURE_HEADER = "x-signature"
API_KEY_HEADER = "x-api-key"


# ── Dependency Injection Helpers ─────────────────────────────────────────────


def _get_webhook_dispatcher(request: Request) -> Any:
    """Retrieve WebhookDispatcher from app.state, 503 if not available."""
    dispatcher = getattr(request.app.state, "webhook_dispatcher", None)
    if dispatcher is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Webhook dispatcher not initialized",
        )
    return dispatcher


def _get_webhook_secret(request: Request) -> str:
    secret = getattr(request.app.state, "webhook_secret", None)
    if secret is None:
        secret = get_settings().STREAM_API_SECRET
    return secret


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


# ── Endpoint ─────────────────────────────────────────────────────────────────


@router.post("/webhook")
async def receive_webhook(request: Request):
    """Receive a signed call/chat lifecycle event from the provider."""
    signature = request.headers.get(SIGNATURE_HEADER)
    api_key = request.headers.get(API_KEY_HEADER)
    if not signature or not api_key:
        webhook_events_total.labels(event_type="unknown", outcome="missing_headers").inc()
        return _error(status.HTTP_400_BAD_REQUEST, "Missing signature or API key")

    raw_body = await request.body()
    if not verify_signature(raw_body, signature, _get_webhook_secret(request)):
        logger.warning("webhook.invalid_signature", body_bytes=len(raw_body))
        webhook_events_total.labels(event_type="unknown", outcome="invalid_signature").inc()
        return _error(status.HTTP_401_UNAUTHORIZED, "Invalid signature")

    try:
        payload = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        webhook_events_total.labels(event_type="unknown", outcome="invalid_json").inc()
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid JSON")

    event = parse_event(payload)
    if event is None:
        webhook_events_total.labels(event_type="unsupported", outcome="ignored").inc()
        return {"status": "ok"}

    dispatcher = _get_webhook_dispatcher(request)
    outcome = await dispatcher.dispatch(event)
    webhook_events_total.labels(event_type=event.type, outcome=outcome).inc()
    return {"status": "ok"}
