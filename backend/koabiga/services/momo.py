"""MTN MoMo collection API client (request-to-pay)."""
import base64
import logging
import re
import time
import uuid
from typing import Any, Dict, Optional

import httpx

from koabiga.core.config import settings

logger = logging.getLogger(__name__)

# Tokens are valid for an hour; refresh a little early
TOKEN_TTL_SECONDS = 3300

_token_cache: Dict[str, Any] = {}


class MomoError(Exception):
    """The gateway could not be reached or refused the request."""


def format_phone_number(phone_number: str) -> str:
    """Normalize to MSISDN digits with the configured country code."""
    digits = re.sub(r"\D", "", phone_number or "")
    code = settings.MOMO_COUNTRY_CODE
    if digits.startswith("0"):
        digits = code + digits[1:]
    if not digits.startswith(code):
        digits = code + digits
    return digits


def _base_headers() -> Dict[str, str]:
    return {
        "X-Target-Environment": settings.MOMO_TARGET_ENVIRONMENT,
        "Ocp-Apim-Subscription-Key": settings.MOMO_SUBSCRIPTION_KEY,
    }


async def get_access_token(client: httpx.AsyncClient) -> str:
    cached = _token_cache.get("token")
    if cached and _token_cache.get("expires_at", 0) > time.monotonic():
        return cached

    credentials = base64.b64encode(f"{settings.MOMO_API_USER}:{settings.MOMO_API_KEY}".encode()).decode()
    headers = {**_base_headers(), "Authorization": f"Basic {credentials}"}
    try:
        response = await client.post(f"{settings.MOMO_BASE_URL}/collection/token/", headers=headers)
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        logger.error("MoMo token request failed: %s - %s", e.response.status_code, e.response.text[:200])
        raise MomoError("Failed to get access token") from e
    except httpx.HTTPError as e:
        logger.error("MoMo token request failed: %s", e)
        raise MomoError("Failed to get access token") from e

    token = response.json()["access_token"]
    _token_cache.update(token=token, expires_at=time.monotonic() + TOKEN_TTL_SECONDS)
    return token


async def request_to_pay(
    amount: str,
    phone_number: str,
    description: str,
    external_id: Optional[str] = None,
) -> Dict[str, str]:
    """
    Ask the payer to approve a payment on their phone.

    Returns reference_id / external_id. The outcome arrives later through the
    callback, or by polling get_payment_status.
    """
    reference_id = str(uuid.uuid4())
    external_id = external_id or reference_id
    payload = {
        "amount": amount,
        "currency": settings.MOMO_CURRENCY,
        "externalId": external_id,
        "payer": {"partyIdType": "MSISDN", "partyId": format_phone_number(phone_number)},
        "payerMessage": description,
        "payeeNote": description,
    }
    async with httpx.AsyncClient(timeout=settings.MOMO_TIMEOUT_SECONDS) as client:
        token = await get_access_token(client)
        headers = {
            **_base_headers(),
            "Authorization": f"Bearer {token}",
            "X-Reference-Id": reference_id,
        }
        if settings.MOMO_CALLBACK_URL:
            headers["X-Callback-Url"] = settings.MOMO_CALLBACK_URL
        try:
            response = await client.post(
                f"{settings.MOMO_BASE_URL}/collection/v1_0/requesttopay",
                json=payload,
                headers=headers,
            )
        except httpx.HTTPError as e:
            logger.error("MoMo request-to-pay failed: %s", e)
            raise MomoError("Payment request failed") from e
    if response.status_code != 202:
        logger.error("MoMo request-to-pay rejected: %s - %s", response.status_code, response.text[:200])
        raise MomoError(f"Payment request rejected ({response.status_code})")
    logger.info("MoMo payment requested, reference %s", reference_id)
    return {"reference_id": reference_id, "external_id": external_id, "currency": settings.MOMO_CURRENCY}


async def get_payment_status(reference_id: str) -> Dict[str, Any]:
    async with httpx.AsyncClient(timeout=settings.MOMO_TIMEOUT_SECONDS) as client:
        token = await get_access_token(client)
        headers = {**_base_headers(), "Authorization": f"Bearer {token}"}
        try:
            response = await client.get(
                f"{settings.MOMO_BASE_URL}/collection/v1_0/requesttopay/{reference_id}",
                headers=headers,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error("MoMo status check failed: %s - %s", e.response.status_code, e.response.text[:200])
            raise MomoError("Failed to check payment status") from e
        except httpx.HTTPError as e:
            logger.error("MoMo status check failed: %s", e)
            raise MomoError("Failed to check payment status") from e
    return normalize_status(reference_id, response.json())


def normalize_status(reference_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Map a status/callback body to the fields stored on Payment."""
    reason = data.get("reason")
    if isinstance(reason, dict):
        reason = reason.get("message") or reason.get("code")
    return {
        "reference_id": data.get("referenceId") or reference_id,
        "status": data.get("status") or "unknown",
        "external_id": data.get("externalId"),
        "financial_transaction_id": data.get("financialTransactionId"),
        "reason": reason,
    }
