"""
mock_payment_service.py — Mock Implementation of the Payment Gateway (REST API)

This module provides a simulated, Stripe compatible payment gateway for local
runs and for the test suite. It mimics the gateway's charge endpoint closely
enough for the pizza service's PaymentClient.

Simulation Scenarios:
    • Successful charge
    • Declined card (HTTP 402), source starting with "tok_chargeDeclined"
    • Slow gateway, source starting with "tok_timeout"
    • Idempotent replay: a repeated Idempotency-Key returns the first answer

Endpoints:
    POST /v1/charges — Form-encoded charge request.

Port:
    Default: 12111 (HTTP)
"""

import asyncio
import logging
import os
import time
import uuid
from typing import Any, Dict, Optional
from urllib.parse import parse_qs

from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse

app = FastAPI(title="Mock Payment Service")
log = logging.getLogger(__name__)

TIMEOUT_DELAY_SECONDS = float(os.environ.get("MOCK_PAYMENT_TIMEOUT_DELAY", "10"))

# Idempotency-Key -> (status code, body)
charges_by_key: Dict[str, tuple] = {}


def _card_error(message: str, code: str, status_code: int = 402) -> tuple:
    return status_code, {"error": {"type": "card_error", "code": code, "message": message}}


def _charge(amount: int, currency: str, source: str, description: str) -> Dict[str, Any]:
    return {
        "id": f"ch_{uuid.uuid4().hex[:24]}",
        "object": "charge",
        "amount": amount,
        "currency": currency,
        "description": description,
        "paid": True,
        "status": "succeeded",
        "source": {"id": source, "object": "card"},
        "created": int(time.time()),
    }


@app.post("/v1/charges")
async def create_charge(request: Request, idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key")):
    """
    Processes a charge request.

    The outcome depends on the `source` field:
        - Starts with "tok_chargeDeclined" → card declined (HTTP 402)
        - Starts with "tok_timeout" → answers only after TIMEOUT_DELAY_SECONDS
        - Any other source → succeeded charge

    Returns:
        JSONResponse: The charge object, or a Stripe style error body.
    """
    form = {key: values[0] for key, values in parse_qs((await request.body()).decode()).items()}

    if idempotency_key and idempotency_key in charges_by_key:
        log.info(f"[PS] Replaying response for Idempotency-Key {idempotency_key}")
        status_code, body = charges_by_key[idempotency_key]
        return JSONResponse(status_code=status_code, content=body)

    try:
        amount = int(form.get("amount", ""))
    except ValueError:
        amount = 0
    currency = form.get("currency", "")
    source = form.get("source", "")
    log.info(f"[PS] Charge request: {amount} {currency} from {source} (Idempotency-Key: {idempotency_key})")

    # Scenario simulation
    if amount <= 0 or not currency or not source:
        status_code, body = _card_error("Missing or invalid amount, currency or source.", "parameter_missing", 400)
        body["error"]["type"] = "invalid_request_error"
    elif source.startswith("tok_chargeDeclined"):
        log.warning(f"[PS] Card declined for {idempotency_key}.")
        status_code, body = _card_error("Your card was declined.", "card_declined")
    elif source.startswith("tok_timeout"):
        log.info(f"[PS] Simulating a slow gateway for {idempotency_key}...")
        await asyncio.sleep(TIMEOUT_DELAY_SECONDS)
        status_code, body = 200, _charge(amount, currency, source, form.get("description", ""))
    else:
        status_code, body = 200, _charge(amount, currency, source, form.get("description", ""))

    if idempotency_key:
        charges_by_key[idempotency_key] = (status_code, body)
    return JSONResponse(status_code=status_code, content=body)


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run(app, host="0.0.0.0", port=12111)
