"""
This module provides communication clients for the external systems used by the pizza service:
- Payment Gateway (Stripe compatible REST API)
- Mail Transport (Mailgun compatible REST API)
Each class encapsulates its protocol logic, error handling, and connection management.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from . import config
from .errors import PaymentFailed

log = logging.getLogger(__name__)


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return {"raw": response.text}


# --- Payment Client (REST) ---
class PaymentClient:
    """
    Client for the payment gateway.
    Creates charges; every failure is turned into PaymentFailed carrying the gateway's answer.
    """
    def __init__(self, base_url: str = None, secret_key: str = None, transport: httpx.AsyncBaseTransport = None):
        """
        Initializes the HTTP client with proper timeout configuration.

        Args:
            base_url (str, optional): Overrides config.PAYMENT_SERVICE_URL.
            secret_key (str, optional): Overrides config.PAYMENT_SECRET_KEY.
            transport (httpx.AsyncBaseTransport, optional): Custom transport (used by tests).
        """
        timeout_config = httpx.Timeout(5.0, read=8.0)
        secret_key = config.PAYMENT_SECRET_KEY if secret_key is None else secret_key
        self.client = httpx.AsyncClient(
            base_url=base_url or config.PAYMENT_SERVICE_URL,
            timeout=timeout_config,
            headers={"Authorization": f"Bearer {secret_key}", "Accept": "application/json"},
            transport=transport,
        )

    async def aclose(self):
        """Closes the HTTP client session."""
        await self.client.aclose()

    async def create_charge(self, order_id: str, source: str, amount_cents: int, currency: str) -> Dict[str, Any]:
        """
        Creates a single charge via the gateway's REST API.

        The order id is sent as the idempotency key, so a repeated request for
        the same order is answered with the original charge instead of a new one.

        Args:
            order_id (str): Unique order identifier.
            source (str): Payment method token (e.g. 'tok_visa').
            amount_cents (int): Charge amount in minor units.
            currency (str): ISO currency code (e.g. 'usd').
        Returns:
            dict: The gateway's charge object.
        Raises:
            PaymentFailed: On a declined charge, an error status or an unreachable gateway.
        """
        payload = {
            "amount": amount_cents,
            "currency": currency,
            "source": source,
            "description": f"Pizza order {order_id}",
        }
        headers = {"Idempotency-Key": order_id}

        try:
            response = await self.client.post("/v1/charges", data=payload, headers=headers)
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as e:
            log.error(f"[Order: {order_id}] Payment gateway timeout ({type(e).__name__}). Charge status unknown.")
            raise PaymentFailed("Payment gateway did not respond.", {"error": type(e).__name__})
        except httpx.HTTPStatusError as e:
            body = _response_body(e.response)
            if e.response.status_code == 402:
                log.warning(f"[Order: {order_id}] Payment declined: {body}")
            else:
                log.error(f"[Order: {order_id}] HTTP error from payment gateway: {e.response.status_code}")
            raise PaymentFailed("Payment failed.", body)
        except httpx.TransportError as e:
            log.error(f"[Order: {order_id}] Payment gateway unreachable: {e}")
            raise PaymentFailed("Payment gateway unreachable.", {"error": str(e)})
        except ValueError:
            log.error(f"[Order: {order_id}] Payment gateway returned a non-JSON body.")
            raise PaymentFailed("Payment gateway returned an unreadable response.", {"raw": response.text})


# --- Mail Client (REST) ---
class MailClient:
    """
    Client for the mail transport.
    Sending is best effort for callers; this class still raises so they can log the failure.
    """
    def __init__(self, base_url: str = None, api_key: str = None, domain: str = None,
                 transport: httpx.AsyncBaseTransport = None):
        api_key = config.MAIL_API_KEY if api_key is None else api_key
        self.domain = domain or config.MAIL_DOMAIN
        self.client = httpx.AsyncClient(
            base_url=base_url or config.MAIL_SERVICE_URL,
            timeout=httpx.Timeout(5.0, read=8.0),
            auth=("api", api_key),
            transport=transport,
        )

    async def aclose(self):
        await self.client.aclose()

    async def send(self, sender: str, to: str, subject: str, html: str) -> Optional[Dict[str, Any]]:
        """
        Sends one HTML message.

        Raises:
            httpx.HTTPError: If the transport cannot be reached or rejects the message.
        """
        payload = {"from": sender, "to": to, "subject": subject, "html": html}
        try:
            response = await self.client.post(f"/v3/{self.domain}/messages", data=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            log.error(f"Mail transport rejected message to {to}: HTTP {e.response.status_code}")
            raise
        except httpx.TransportError as e:
            log.error(f"Mail transport unreachable while sending to {to}: {e}")
            raise
        log.info(f"Mail '{subject}' sent to {to}.")
        return _response_body(response)
