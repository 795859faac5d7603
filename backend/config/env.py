import os
from decimal import Decimal
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


# =====================================================
# ENV
# =====================================================
ENV = os.getenv("ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# =====================================================
# DATABASE
# =====================================================
MONGO_URI = os.getenv("MONGO_URI") or os.getenv("MONGODB_URI")

# =====================================================
# JWT
# =====================================================
JWT_SECRET = os.getenv("JWT_SECRET")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_MINUTES = int(os.getenv("ACCESS_TOKEN_MINUTES", 60))

# =====================================================
# SETTLEMENT
# =====================================================
PLATFORM_FEE_RATE = Decimal(os.getenv("PLATFORM_FEE_RATE", "0.15"))
MIN_PAYOUT_AMOUNT = Decimal(os.getenv("MIN_PAYOUT_AMOUNT", "50"))
CURRENCY = os.getenv("CURRENCY", "EUR")

# =====================================================
# RETURNS
# =====================================================
RETURN_WINDOW_DAYS = int(os.getenv("RETURN_WINDOW_DAYS", 30))

# =====================================================
# TRANSITION POLICY
# =====================================================
# Off = accept any forward order status / any dispute status.
STRICT_ORDER_TRANSITIONS = _flag("STRICT_ORDER_TRANSITIONS", True)
STRICT_DISPUTE_TRANSITIONS = _flag("STRICT_DISPUTE_TRANSITIONS", True)

# =====================================================
# PAYOUTS
# =====================================================
PAYOUT_PROVIDER = os.getenv("PAYOUT_PROVIDER", "manual")
RAZORPAYX_KEY_ID = os.getenv("RAZORPAYX_KEY_ID")
RAZORPAYX_KEY_SECRET = os.getenv("RAZORPAYX_KEY_SECRET")
RAZORPAYX_ACCOUNT_NUMBER = os.getenv("RAZORPAYX_ACCOUNT_NUMBER")
PAYOUT_RECONCILE_INTERVAL_SECONDS = int(os.getenv("PAYOUT_RECONCILE_INTERVAL_SECONDS", 300))

# =====================================================
# CORS
# =====================================================
CORS_ALLOWED_ORIGINS = os.getenv("CORS_ALLOWED_ORIGINS", "").split(",")


def validate_production_env() -> None:
    if (ENV or "").lower() != "production":
        return

    required = {
        "JWT_SECRET": JWT_SECRET,
        "MONGODB_URI": MONGO_URI,
    }
    if (PAYOUT_PROVIDER or "").lower() == "razorpayx":
        required.update({
            "RAZORPAYX_KEY_ID": RAZORPAYX_KEY_ID,
            "RAZORPAYX_KEY_SECRET": RAZORPAYX_KEY_SECRET,
            "RAZORPAYX_ACCOUNT_NUMBER": RAZORPAYX_ACCOUNT_NUMBER,
        })

    invalid = []
    for key, value in required.items():
        val = (value or "").strip()
        if not val or val.startswith("CHANGE_THIS"):
            invalid.append(key)

    if invalid:
        raise RuntimeError(f"Production env misconfigured. Invalid keys: {', '.join(sorted(invalid))}")

    if not (Decimal("0") <= PLATFORM_FEE_RATE < Decimal("1")):
        raise RuntimeError("PLATFORM_FEE_RATE must be within [0, 1)")
