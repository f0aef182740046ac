"""Courier webhook routes."""

import json
import logging

from fastapi import APIRouter, HTTPException, Request, status

from restodesk.api.deps import Delivery, Notifier
from restodesk.core.config import settings
from restodesk.core.rate_limit import limiter
from restodesk.db.session import DbSession
from restodesk.services.webhook_service import DeliveryWebhookHandler

logger = logging.getLogger(__name__)

router = APIRouter()


async def _receive(request: Request, db: DbSession, notifier: Notifier, delivery: Delivery) -> dict:
    body = await request.body()

    if settings.lalamove_webhook_secret:
        signature = request.headers.get("X-Lalamove-Signature", "")
        provider = delivery.registry.get("lalamove")
        if not provider.verify_webhook(body, signature):
            logger.warning("Rejected courier webhook with invalid signature")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid webhook signature",
            )

    try:
        payload = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload")
    if not isinstance(payload, dict) or not payload.get("event"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing event")

    handler = DeliveryWebhookHandler(db, notifier, delivery=delivery)
    result = await handler.handle_webhook(str(payload["event"]), payload)
    return {"success": True, **result}


@router.post("/delivery")
@limiter.limit("120/minute")
async def delivery_webhook(request: Request, db: DbSession, notifier: Notifier, delivery: Delivery):
    """Receive courier order events."""
    return await _receive(request, db, notifier, delivery)


@router.post("/lalamove")
@limiter.limit("120/minute")
async def lalamove_webhook(request: Request, db: DbSession, notifier: Notifier, delivery: Delivery):
    return await _receive(request, db, notifier, delivery)
