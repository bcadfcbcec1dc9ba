from __future__ import annotations

import json
import logging

import stripe
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from config.settings import get_settings
from database import get_db
from services.billing.events import dispatch_event
from services.billing.signature import assert_valid_signature

logger = logging.getLogger(__name__)

router = APIRouter()


def _webhook_error(message: str) -> PlainTextResponse:
    return PlainTextResponse(f"Webhook Error: {message}", status_code=400)


# Webhook: no auth, the signature is the credential
@router.post("/stripe-webhook")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    try:
        settings = get_settings()
        webhook_secret = settings.require("stripe_webhook_secret")
        api_key = settings.require("stripe_secret_key")

        # raw bytes: decoding first would change what was signed
        payload = await request.body()
        sig = request.headers.get("stripe-signature")
        if not sig:
            logger.warning("stripe_webhook_missing_signature")
            return _webhook_error("Missing stripe-signature header")

        try:
            assert_valid_signature(
                payload,
                sig,
                webhook_secret,
                tolerance=settings.stripe_webhook_tolerance,
                scheme=settings.stripe_signature_scheme,
            )
        except stripe.SignatureVerificationError as e:
            logger.warning("stripe_webhook_signature_failed reason=%s", e)
            return _webhook_error(str(e))

        try:
            event = json.loads(payload)
        except (UnicodeDecodeError, json.JSONDecodeError):
            return _webhook_error("Invalid payload")
        if not isinstance(event, dict) or not isinstance(event.get("type"), str):
            return _webhook_error("Invalid payload")

        # sync session and Stripe HTTP calls stay off the event loop
        handled = await run_in_threadpool(dispatch_event, db, event, api_key)
        logger.info("stripe_webhook_processed type=%s handled=%s", event["type"], handled)
        return PlainTextResponse("ok", status_code=200)
    except Exception as e:
        logger.exception("stripe_webhook_error")
        return JSONResponse(status_code=500, content={"error": str(e)})
