"""
Payout provider adapter. The engine only ever calls ``execute_bank_payout``
and ``fetch_payout_status``; both are blocking and run via asyncio.to_thread.

Providers report ``provider_payout_status``; ``map_provider_status`` folds it
onto the engine's payout states.
"""

import base64
import json
from urllib import error, request

from config.env import (
    CURRENCY,
    PAYOUT_PROVIDER,
    RAZORPAYX_ACCOUNT_NUMBER,
    RAZORPAYX_KEY_ID,
    RAZORPAYX_KEY_SECRET,
)
from models.payout import PayoutStatus
from utils.errors import PayoutProviderError

RAZORPAYX_API_BASE = "https://api.razorpay.com/v1"

PROVIDER_DONE = {"processed"}
PROVIDER_FAILED = {"failed", "reversed", "rejected", "cancelled"}


def map_provider_status(provider_status: str | None) -> str:
    value = (provider_status or "").lower()
    if value in PROVIDER_DONE:
        return PayoutStatus.COMPLETED.value
    if value in PROVIDER_FAILED:
        return PayoutStatus.FAILED.value
    return PayoutStatus.PROCESSING.value


# ==============================
# RazorpayX transport
# ==============================

def _basic_auth_header(key_id: str, key_secret: str) -> str:
    token = f"{key_id}:{key_secret}".encode("utf-8")
    return "Basic " + base64.b64encode(token).decode("utf-8")


def _require_razorpayx_config() -> tuple[str, str, str]:
    if not RAZORPAYX_KEY_ID or not RAZORPAYX_KEY_SECRET or not RAZORPAYX_ACCOUNT_NUMBER:
        raise PayoutProviderError("RazorpayX payout config missing", rejected=True)
    return RAZORPAYX_KEY_ID, RAZORPAYX_KEY_SECRET, RAZORPAYX_ACCOUNT_NUMBER


def _call(req: request.Request) -> dict:
    try:
        with request.urlopen(req, timeout=20) as resp:
            return json.loads(resp.read().decode("utf-8"))
    except error.HTTPError as e:
        details = e.read().decode("utf-8", errors="ignore")
        # 4xx: the provider refused the request, nothing was paid.
        raise PayoutProviderError(
            "Payout provider error",
            provider_response=details,
            rejected=400 <= e.code < 500,
        ) from e
    except (error.URLError, TimeoutError, ValueError) as e:
        raise PayoutProviderError("Payout provider request failed") from e


def _razorpayx_create(payout: dict) -> dict:
    key_id, key_secret, account_number = _require_razorpayx_config()
    payout_ref = str(payout["_id"])

    payload = {
        "account_number": account_number,
        "fund_account_id": payout["destination"],
        "amount": payout["net_amount_cents"],
        "currency": payout.get("currency") or CURRENCY,
        "mode": "IMPS",
        "purpose": "payout",
        "queue_if_low_balance": True,
        "reference_id": payout_ref,
        "narration": "Marketplace seller payout",
        "notes": {
            "seller_id": str(payout["seller_id"]),
            "payout_id": payout_ref,
        },
    }
    req = request.Request(
        url=f"{RAZORPAYX_API_BASE}/payouts",
        data=json.dumps(payload).encode("utf-8"),
        headers={
            "Content-Type": "application/json",
            "Authorization": _basic_auth_header(key_id, key_secret),
            # Same payout id -> same provider payout, never a second transfer.
            "X-Payout-Idempotency": payout_ref,
        },
        method="POST",
    )
    result = _call(req)
    if not result.get("id"):
        raise PayoutProviderError("Payout creation failed at provider")
    return {
        "provider": "razorpayx",
        "provider_payout_id": result["id"],
        "provider_payout_status": result.get("status"),
    }


def _razorpayx_fetch(provider_payout_id: str) -> dict:
    key_id, key_secret, _ = _require_razorpayx_config()
    req = request.Request(
        url=f"{RAZORPAYX_API_BASE}/payouts/{provider_payout_id}",
        headers={"Authorization": _basic_auth_header(key_id, key_secret)},
        method="GET",
    )
    result = _call(req)
    return {
        "provider": "razorpayx",
        "provider_payout_id": result.get("id") or provider_payout_id,
        "provider_payout_status": result.get("status"),
    }


# ==============================
# Entry points
# ==============================

def execute_bank_payout(*, payout: dict) -> dict:
    """
    Start the money movement for ``payout``.
    The manual provider settles off-platform and reports success at once.
    """
    provider = (PAYOUT_PROVIDER or "").lower()
    if provider == "manual":
        return {
            "provider": "manual",
            "provider_payout_id": f"manual_{payout['_id']}",
            "provider_payout_status": "processed",
        }
    if provider == "razorpayx":
        return _razorpayx_create(payout)
    raise PayoutProviderError("Unsupported payout provider", provider=provider, rejected=True)


def fetch_payout_status(*, provider: str, provider_payout_id: str) -> dict:
    provider = (provider or "").lower()
    if provider == "manual":
        return {
            "provider": "manual",
            "provider_payout_id": provider_payout_id,
            "provider_payout_status": "processed",
        }
    if provider == "razorpayx":
        return _razorpayx_fetch(provider_payout_id)
    raise PayoutProviderError("Unsupported payout provider", provider=provider, rejected=True)
