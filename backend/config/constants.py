# backend/config/constants.py

# -----------------------------
# ACTOR ROLES
# -----------------------------

ROLE_ADMIN = "admin"
ROLE_SELLER = "seller"
ROLE_BUYER = "buyer"
ROLE_SYSTEM = "system"

# -----------------------------
# AUDIT ENTITY TYPES
# -----------------------------

ENTITY_ORDER = "order"
ENTITY_REFUND = "refund"
ENTITY_RETURN = "return"
ENTITY_DISPUTE = "dispute"
ENTITY_PAYOUT = "seller_payout"

# -----------------------------
# AUDIT ACTIONS
# -----------------------------

ACTION_ORDER_STATUS_CHANGED = "order_status_changed"

ACTION_REFUND_REQUESTED = "refund_requested"
ACTION_REFUND_APPROVED = "refund_approved"
ACTION_REFUND_REJECTED = "refund_rejected"

ACTION_RETURN_REQUESTED = "return_requested"
ACTION_RETURN_STATUS_CHANGED = "return_status_changed"

ACTION_DISPUTE_OPENED = "dispute_opened"
ACTION_DISPUTE_STATUS_CHANGED = "dispute_status_changed"
ACTION_DISPUTE_RESOLUTION_ADDED = "dispute_resolution_added"

ACTION_PAYOUT_REQUESTED = "payout_requested"
ACTION_PAYOUT_PROCESSING = "payout_processing"
ACTION_PAYOUT_COMPLETED = "payout_completed"
ACTION_PAYOUT_FAILED = "payout_failed"

# -----------------------------
# LIST LIMITS
# -----------------------------

DEFAULT_LIST_LIMIT = 100
MAX_LIST_LIMIT = 500
