"""
mock_mail_service.py — Mock Implementation of the Mail Transport (REST API)

Simulates a Mailgun compatible transport. Accepted messages are kept in the
in-memory `outbox` so tests and local runs can inspect what would have been
sent.

Simulation Scenarios:
    • Accepted message
    • Rejected message (HTTP 500), recipient starting with "bounce"

Endpoints:
    POST /v3/{domain}/messages — Form-encoded message.
    GET  /outbox               — Messages accepted so far.

Port:
    Default: 12112 (HTTP)
"""

import logging
import uuid
from typing import Any, Dict, List
from urllib.parse import parse_qs

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

app = FastAPI(title="Mock Mail Service")
log = logging.getLogger(__name__)

outbox: List[Dict[str, Any]] = []


@app.post("/v3/{domain}/messages")
async def send_message(domain: str, request: Request):
    form = {key: values[0] for key, values in parse_qs((await request.body()).decode()).items()}
    recipient = form.get("to", "")

    if not recipient or not form.get("from"):
        return JSONResponse(status_code=400, content={"message": "'from' and 'to' parameters are required"})

    if recipient.startswith("bounce"):
        log.warning(f"[MAIL] Simulated failure for {recipient}.")
        return JSONResponse(status_code=500, content={"message": "Internal server error"})

    message_id = f"<{uuid.uuid4().hex}@{domain}>"
    outbox.append({"id": message_id, "domain": domain, **form})
    log.info(f"[MAIL] Queued '{form.get('subject')}' for {recipient}.")
    return {"id": message_id, "message": "Queued. Thank you."}


@app.get("/outbox")
async def list_outbox():
    return outbox


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run(app, host="0.0.0.0", port=12112)
