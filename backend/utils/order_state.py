"""
Order state machine.

    pending -> paid -> confirmed -> shipped -> delivered
    cancelled  <- any non-terminal state
    refunded   <- any state, once approved refunds cover the whole total
"""

from datetime import datetime

from config.constants import ACTION_ORDER_STATUS_CHANGED, ENTITY_ORDER
from config.env import STRICT_ORDER_TRANSITIONS
from models.order import OrderStatus, PaymentStatus
from utils.audit import log_audit
from utils.errors import InvalidState
from utils.order_store import get_order, update_order_status

ORDER_FLOW = [
    OrderStatus.PENDING.value,
    OrderStatus.PAID.value,
    OrderStatus.CONFIRMED.value,
    OrderStatus.SHIPPED.value,
    OrderStatus.DELIVERED.value,
]

TERMINAL_STATUSES = {
    OrderStatus.DELIVERED.value,
    OrderStatus.CANCELLED.value,
    OrderStatus.REFUNDED.value,
}

# No way out of these two.
CLOSED_STATUSES = {
    OrderStatus.CANCELLED.value,
    OrderStatus.REFUNDED.value,
}


def next_status(current: str) -> str | None:
    if current not in ORDER_FLOW:
        return None
    idx = ORDER_FLOW.index(current)
    return ORDER_FLOW[idx + 1] if idx + 1 < len(ORDER_FLOW) else None


def check_transition(order: dict, target: str, *, strict: bool = STRICT_ORDER_TRANSITIONS) -> None:
    """
    Raise InvalidState unless ``order`` may move to ``target``.
    """
    current = order["status"]

    if target not in {s.value for s in OrderStatus}:
        raise InvalidState(f"Unknown order status '{target}'", precondition="known_status")

    if current in CLOSED_STATUSES:
        raise InvalidState(
            f"Order is {current} and cannot change status",
            precondition="not_terminal",
            current=current,
        )

    if target == current:
        raise InvalidState(f"Order is already {current}", precondition="status_changes", current=current)

    if target == OrderStatus.CANCELLED.value:
        if current in TERMINAL_STATUSES:
            raise InvalidState(
                f"Cannot cancel an order that is {current}",
                precondition="not_terminal",
                current=current,
            )
        return

    if target == OrderStatus.REFUNDED.value:
        if order.get("refunded_amount_cents", 0) < order["total_cents"]:
            raise InvalidState(
                "Order can only be marked refunded once approved refunds cover its total",
                precondition="fully_refunded",
                current=current,
            )
        return

    if strict:
        if target != next_status(current):
            raise InvalidState(
                f"Order cannot move from {current} to {target}",
                precondition="adjacent_status",
                current=current,
                allowed=next_status(current),
            )
        return

    if ORDER_FLOW.index(target) <= ORDER_FLOW.index(current):
        raise InvalidState(
            f"Order cannot move back from {current} to {target}",
            precondition="forward_status",
            current=current,
        )


def passes_through_paid(current: str, target: str) -> bool:
    """True when a forward move lands on or jumps over ``paid``."""
    if current not in ORDER_FLOW or target not in ORDER_FLOW:
        return False
    paid = ORDER_FLOW.index(OrderStatus.PAID.value)
    return ORDER_FLOW.index(current) < paid <= ORDER_FLOW.index(target)


def transition_side_effects(order: dict, target: str, *, reason: str | None = None) -> dict:
    now = datetime.utcnow()
    effects = {}

    if passes_through_paid(order["status"], target):
        effects["payment_status"] = PaymentStatus.PAID.value

    if target == OrderStatus.DELIVERED.value:
        # Delivered items become eligible for seller payout aggregation.
        effects["delivered_at"] = now
    elif target == OrderStatus.CANCELLED.value:
        effects.update({"cancelled_at": now, "cancel_reason": reason})
    elif target == OrderStatus.REFUNDED.value:
        effects.update({"payment_status": PaymentStatus.REFUNDED.value, "refunded_at": now})
    return effects


async def transition_order(
    db,
    order_id,
    target_status,
    actor: dict,
    *,
    reason: str | None = None,
    strict: bool | None = None,
) -> dict:
    target = target_status.value if isinstance(target_status, OrderStatus) else str(target_status)
    order = await get_order(db, order_id)

    check_transition(
        order,
        target,
        strict=STRICT_ORDER_TRANSITIONS if strict is None else strict,
    )

    # A failed write raises before anything is audited.
    updated = await update_order_status(
        db,
        order,
        target,
        transition_side_effects(order, target, reason=reason),
    )

    await log_audit(
        db,
        actor=actor,
        action=ACTION_ORDER_STATUS_CHANGED,
        entity_type=ENTITY_ORDER,
        entity_id=order["_id"],
        old_values={"status": order["status"]},
        new_values={"status": target, "reason": reason} if reason else {"status": target},
    )

    return updated
