"""Tests for seller balances and payouts."""

import asyncio
from decimal import Decimal

import pytest

from utils.audit import list_audit_logs
from utils.errors import (
    BelowMinimum,
    Conflict,
    InsufficientBalance,
    InvalidDestination,
    InvalidState,
    PayoutProviderError,
)
from utils.refund_service import approve_refund, request_refund
from utils.settlement import (
    compute_seller_balance,
    fail_payout,
    get_payout,
    list_payouts,
    process_payout,
    reconcile_payout,
    request_payout,
)
from workers.payout_reconcile_worker import reconcile_processing_payouts

DESTINATION = "fa_00000000000001"


def provider_reply(status, payout_ref="pout_1"):
    def executor(*, payout):
        return {
            "provider": "manual",
            "provider_payout_id": payout_ref,
            "provider_payout_status": status,
        }

    return executor


@pytest.fixture
def delivered_sales(order_factory):
    """Delivered gross of 200.00 for seller-1."""

    async def make():
        await order_factory(status="delivered", lines=(("seller-1", "100.00", 1),))
        await order_factory(status="delivered", lines=(("seller-1", "50.00", 2), ("seller-2", "10.00", 1)))

    return make


class TestBalance:
    async def test_delivered_items_only(self, db, order_factory, delivered_sales):
        await delivered_sales()
        await order_factory(status="shipped", lines=(("seller-1", "999.00", 1),))
        await order_factory(status="cancelled", lines=(("seller-1", "999.00", 1),))

        balance = await compute_seller_balance(db, "seller-1")

        assert balance["gross"] == Decimal("200.00")
        assert balance["fee"] == Decimal("30.00")
        assert balance["net"] == Decimal("170.00")
        assert balance["available"] == Decimal("170.00")
        assert balance["pending"] == Decimal("0.00")
        assert balance["paid"] == Decimal("0.00")
        assert balance["currency"] == "EUR"

    async def test_no_sales(self, db):
        balance = await compute_seller_balance(db, "seller-unknown")
        assert balance["gross"] == Decimal("0.00")
        assert balance["available"] == Decimal("0.00")

    async def test_injected_fee_rate(self, db, delivered_sales):
        await delivered_sales()

        balance = await compute_seller_balance(db, "seller-1", fee_rate=Decimal("0.10"))
        assert balance["fee"] == Decimal("20.00")
        assert balance["net"] == Decimal("180.00")

    async def test_refunded_orders_drop_out(self, db, order_factory, buyer, admin):
        order = await order_factory(status="delivered", lines=(("seller-1", "100.00", 1),))
        refund = await request_refund(db, order["_id"], Decimal("100.00"), None, buyer)
        await approve_refund(db, refund["_id"], admin)

        balance = await compute_seller_balance(db, "seller-1")
        assert balance["gross"] == Decimal("0.00")

    async def test_partial_refund_keeps_full_gross(self, db, order_factory, buyer, admin):
        order = await order_factory(status="delivered", lines=(("seller-1", "100.00", 1),))
        refund = await request_refund(db, order["_id"], Decimal("40.00"), None, buyer)
        await approve_refund(db, refund["_id"], admin)

        balance = await compute_seller_balance(db, "seller-1")
        assert balance["gross"] == Decimal("100.00")


class TestRequestPayout:
    async def test_request_moves_funds_to_pending(self, db, seller, delivered_sales):
        await delivered_sales()

        # 40.00 is under the default 50.00 minimum; the minimum is injectable.
        payout = await request_payout(
            db,
            seller["_id"],
            Decimal("40.00"),
            DESTINATION,
            actor=seller,
            min_amount=Decimal("40"),
        )

        assert payout["status"] == "pending"
        assert payout["net_amount_cents"] == 4000
        assert payout["gross_amount_cents"] == 4706
        assert payout["platform_fee_cents"] == 706
        balance = await compute_seller_balance(db, seller["_id"])
        assert balance["available"] == Decimal("130.00")
        assert balance["pending"] == Decimal("40.00")

    async def test_insufficient_balance_leaves_no_record(self, db, seller, admin, delivered_sales):
        await delivered_sales()
        first = await request_payout(db, seller["_id"], Decimal("150.00"), DESTINATION)
        await process_payout(db, first["_id"], admin)

        with pytest.raises(InsufficientBalance) as exc_info:
            await request_payout(db, seller["_id"], Decimal("30.00"), DESTINATION)

        assert exc_info.value.detail["available"] == "20.00"
        assert len(await list_payouts(db, seller_id=seller["_id"])) == 1

    @pytest.mark.parametrize("amount", ["40.00", "49.99"])
    async def test_below_default_minimum(self, db, seller, delivered_sales, amount):
        await delivered_sales()

        with pytest.raises(BelowMinimum) as exc_info:
            await request_payout(db, seller["_id"], Decimal(amount), DESTINATION)

        assert exc_info.value.detail["minimum"] == "50.00"
        assert await db.seller_payouts.count_documents({}) == 0

    async def test_custom_minimum(self, db, seller, delivered_sales):
        await delivered_sales()

        payout = await request_payout(db, seller["_id"], Decimal("10.00"), DESTINATION, min_amount=Decimal("5"))
        assert payout["net_amount_cents"] == 1000

    @pytest.mark.parametrize("destination", ["", "   ", None])
    async def test_destination_required(self, db, seller, delivered_sales, destination):
        await delivered_sales()

        with pytest.raises(InvalidDestination):
            await request_payout(db, seller["_id"], Decimal("60.00"), destination)

    async def test_concurrent_requests_cannot_overdraw(self, db, seller, delivered_sales):
        await delivered_sales()

        results = await asyncio.gather(
            request_payout(db, seller["_id"], Decimal("100.00"), DESTINATION),
            request_payout(db, seller["_id"], Decimal("100.00"), DESTINATION),
            return_exceptions=True,
        )

        created = [r for r in results if isinstance(r, dict)]
        refused = [r for r in results if isinstance(r, (InsufficientBalance, Conflict))]
        assert len(created) == 1
        assert len(refused) == 1
        assert len(await list_payouts(db, seller_id=seller["_id"])) == 1

    async def test_audited(self, db, seller, delivered_sales):
        await delivered_sales()
        payout = await request_payout(db, seller["_id"], Decimal("60.00"), DESTINATION, actor=seller)

        entries = await list_audit_logs(db, entity_type="seller_payout", entity_id=str(payout["_id"]))
        assert entries[0]["action"] == "payout_requested"
        assert entries[0]["new_values"]["net_amount"] == "60.00"


class TestProcessPayout:
    async def test_manual_provider_completes(self, db, seller, admin, delivered_sales):
        await delivered_sales()
        payout = await request_payout(db, seller["_id"], Decimal("60.00"), DESTINATION)

        processed = await process_payout(db, payout["_id"], admin)

        assert processed["status"] == "completed"
        assert processed["processed_by"] == admin["_id"]
        assert processed["processed_at"] is not None
        balance = await compute_seller_balance(db, seller["_id"])
        assert balance["available"] == Decimal("110.00")
        assert balance["pending"] == Decimal("0.00")
        assert balance["paid"] == Decimal("60.00")

    async def test_completed_is_a_no_op(self, db, seller, admin, delivered_sales):
        await delivered_sales()
        payout = await request_payout(db, seller["_id"], Decimal("60.00"), DESTINATION)
        first = await process_payout(db, payout["_id"], admin)

        def never_called(*, payout):
            raise AssertionError("provider called twice")

        second = await process_payout(db, payout["_id"], admin, executor=never_called)

        assert second == first

    async def test_processing_reconciles_instead_of_paying_again(self, db, seller, admin, delivered_sales):
        await delivered_sales()
        payout = await request_payout(db, seller["_id"], Decimal("60.00"), DESTINATION)

        pending = await process_payout(db, payout["_id"], admin, executor=provider_reply("queued"))
        assert pending["status"] == "processing"
        assert pending["provider_payout_id"] == "pout_1"

        def never_called(*, payout):
            raise AssertionError("payout executed twice")

        lookups = []

        def fetcher(*, provider, provider_payout_id):
            lookups.append(provider_payout_id)
            return {
                "provider": provider,
                "provider_payout_id": provider_payout_id,
                "provider_payout_status": "processed",
            }

        done = await process_payout(db, payout["_id"], admin, executor=never_called, fetcher=fetcher)

        assert done["status"] == "completed"
        assert lookups == ["pout_1"]

    async def test_provider_failure_is_terminal_and_releases_funds(self, db, seller, admin, delivered_sales):
        await delivered_sales()
        payout = await request_payout(db, seller["_id"], Decimal("60.00"), DESTINATION)

        failed = await process_payout(db, payout["_id"], admin, executor=provider_reply("reversed"))

        assert failed["status"] == "failed"
        assert failed["failure_reason"] == "Provider reported reversed"
        balance = await compute_seller_balance(db, seller["_id"])
        assert balance["available"] == Decimal("170.00")

        with pytest.raises(InvalidState):
            await process_payout(db, payout["_id"], admin)

    async def test_rejected_request_fails_payout(self, db, seller, admin, delivered_sales):
        await delivered_sales()
        payout = await request_payout(db, seller["_id"], Decimal("60.00"), DESTINATION)

        def rejecting(*, payout):
            raise PayoutProviderError("Payout provider error", rejected=True)

        with pytest.raises(PayoutProviderError):
            await process_payout(db, payout["_id"], admin, executor=rejecting)

        assert (await get_payout(db, payout["_id"]))["status"] == "failed"
        actions = [e["action"] for e in await list_audit_logs(db, entity_type="seller_payout")]
        assert actions[:2] == ["payout_failed", "payout_processing"]

    async def test_uncertain_error_replays_same_payout(self, db, seller, admin, delivered_sales):
        await delivered_sales()
        payout = await request_payout(db, seller["_id"], Decimal("60.00"), DESTINATION)

        def timing_out(*, payout):
            raise PayoutProviderError("Payout provider request failed")

        with pytest.raises(PayoutProviderError):
            await process_payout(db, payout["_id"], admin, executor=timing_out)

        stuck = await get_payout(db, payout["_id"])
        assert stuck["status"] == "processing"
        assert stuck["last_error"] is not None

        seen = []

        def replay(*, payout):
            seen.append(payout["_id"])
            return provider_reply("processed")(payout=payout)

        done = await reconcile_payout(db, payout["_id"], admin, executor=replay)

        assert done["status"] == "completed"
        assert seen == [payout["_id"]]

    async def test_reconcile_ignores_settled_payouts(self, db, seller, admin, delivered_sales):
        await delivered_sales()
        payout = await request_payout(db, seller["_id"], Decimal("60.00"), DESTINATION)

        assert (await reconcile_payout(db, payout["_id"], admin))["status"] == "pending"

    async def test_balance_round_trip(self, db, seller, admin, delivered_sales):
        await delivered_sales()

        before = await compute_seller_balance(db, seller["_id"])
        assert before["available"] == Decimal("170.00")
        assert before["pending"] == Decimal("0.00")
        assert before["paid"] == Decimal("0.00")

        payout = await request_payout(db, seller["_id"], Decimal("60.00"), DESTINATION)

        requested = await compute_seller_balance(db, seller["_id"])
        assert requested["available"] == Decimal("110.00")
        assert requested["pending"] == Decimal("60.00")
        assert requested["paid"] == Decimal("0.00")

        await process_payout(db, payout["_id"], admin)

        paid = await compute_seller_balance(db, seller["_id"])
        assert paid["available"] == Decimal("110.00")
        assert paid["pending"] == Decimal("0.00")
        assert paid["paid"] == Decimal("60.00")
        assert paid["net"] == before["net"]


class TestFailPayout:
    async def test_pending_payout_funds_return_to_available(self, db, seller, admin, delivered_sales):
        await delivered_sales()
        payout = await request_payout(db, seller["_id"], Decimal("60.00"), DESTINATION)
        assert (await compute_seller_balance(db, seller["_id"]))["available"] == Decimal("110.00")

        failed = await fail_payout(db, payout["_id"], admin, "Wrong bank reference")

        assert failed["status"] == "failed"
        assert failed["failure_reason"] == "Wrong bank reference"
        assert failed["failed_at"] is not None
        balance = await compute_seller_balance(db, seller["_id"])
        assert balance["available"] == Decimal("170.00")
        assert balance["pending"] == Decimal("0.00")
        assert balance["paid"] == Decimal("0.00")

        entries = await list_audit_logs(db, action="payout_failed", entity_id=str(payout["_id"]))
        assert entries[0]["old_values"] == {"status": "pending"}
        assert entries[0]["new_values"]["reason"] == "Wrong bank reference"

    async def test_processing_payout_can_be_failed(self, db, seller, admin, delivered_sales):
        await delivered_sales()
        payout = await request_payout(db, seller["_id"], Decimal("60.00"), DESTINATION)
        await process_payout(db, payout["_id"], admin, executor=provider_reply("queued"))

        failed = await fail_payout(db, payout["_id"], admin, "Stuck at provider")

        assert failed["status"] == "failed"
        assert (await compute_seller_balance(db, seller["_id"]))["available"] == Decimal("170.00")

    async def test_completed_payout_cannot_be_failed(self, db, seller, admin, delivered_sales):
        await delivered_sales()
        payout = await request_payout(db, seller["_id"], Decimal("60.00"), DESTINATION)
        await process_payout(db, payout["_id"], admin)

        with pytest.raises(InvalidState) as exc_info:
            await fail_payout(db, payout["_id"], admin, "Too late")

        assert exc_info.value.detail["precondition"] == "status_is_outstanding"
        assert (await get_payout(db, payout["_id"]))["status"] == "completed"

    @pytest.mark.parametrize("reason", ["", "   ", None])
    async def test_reason_required(self, db, seller, admin, delivered_sales, reason):
        await delivered_sales()
        payout = await request_payout(db, seller["_id"], Decimal("60.00"), DESTINATION)

        with pytest.raises(InvalidState):
            await fail_payout(db, payout["_id"], admin, reason)

        assert (await get_payout(db, payout["_id"]))["status"] == "pending"


class TestRefundAfterPayout:
    async def test_full_refund_of_paid_out_order_leaves_negative_available(
        self, db, order_factory, seller, buyer, admin
    ):
        order = await order_factory(status="delivered", lines=(("seller-1", "100.00", 1),))
        payout = await request_payout(db, seller["_id"], Decimal("60.00"), DESTINATION)
        await process_payout(db, payout["_id"], admin)

        refund = await request_refund(db, order["_id"], Decimal("100.00"), None, buyer)
        await approve_refund(db, refund["_id"], admin)

        balance = await compute_seller_balance(db, seller["_id"])
        assert balance["net"] == Decimal("0.00")
        assert balance["paid"] == Decimal("60.00")
        assert balance["available"] == Decimal("-60.00")

        with pytest.raises(InsufficientBalance):
            await request_payout(db, seller["_id"], Decimal("50.00"), DESTINATION)


class TestReconcileWorker:
    async def test_sweep_settles_processing_payouts(self, db, seller, admin, delivered_sales):
        await delivered_sales()
        payout = await request_payout(db, seller["_id"], Decimal("60.00"), DESTINATION)
        await process_payout(db, payout["_id"], admin, executor=provider_reply("queued", "manual_1"))

        settled = await reconcile_processing_payouts(db)

        assert settled == 1
        done = await get_payout(db, payout["_id"])
        assert done["status"] == "completed"
        entries = await list_audit_logs(db, action="payout_completed")
        assert entries[0]["actor_role"] == "system"
