"""Tests for the dispute workflow."""

import asyncio

import pytest

from utils.audit import list_audit_logs
from utils.dispute_service import (
    add_dispute_resolution,
    get_dispute,
    list_disputes,
    open_dispute,
    set_dispute_status,
)
from utils.errors import AlreadyResolved, InvalidState, NotFound


@pytest.fixture
async def dispute(db, order_factory, buyer):
    order = await order_factory(status="delivered")
    return await open_dispute(db, order["_id"], "seller-1", "item not as described", buyer)


class TestOpenDispute:
    async def test_opens(self, dispute, buyer):
        assert dispute["status"] == "open"
        assert dispute["buyer_id"] == buyer["_id"]
        assert dispute["seller_id"] == "seller-1"
        assert dispute["resolution"] is None

    async def test_seller_must_be_in_order(self, db, order_factory, buyer):
        order = await order_factory(status="delivered")

        with pytest.raises(InvalidState) as exc_info:
            await open_dispute(db, order["_id"], "seller-9", "who?", buyer)
        assert exc_info.value.precondition == "seller_in_order"

    async def test_one_active_dispute_per_seller(self, db, buyer, order_factory):
        order = await order_factory(
            status="delivered",
            lines=(("seller-1", "50.00", 1), ("seller-2", "50.00", 1)),
        )
        await open_dispute(db, order["_id"], "seller-1", "late", buyer)

        with pytest.raises(InvalidState) as exc_info:
            await open_dispute(db, order["_id"], "seller-1", "still late", buyer)
        assert exc_info.value.precondition == "no_active_dispute"

        other = await open_dispute(db, order["_id"], "seller-2", "broken", buyer)
        assert other["status"] == "open"

    async def test_other_buyer(self, db, order_factory, other_buyer):
        order = await order_factory(status="delivered")

        with pytest.raises(NotFound):
            await open_dispute(db, order["_id"], "seller-1", "not mine", other_buyer)


class TestStatus:
    async def test_strict_path(self, db, dispute, admin):
        updated = await set_dispute_status(db, dispute["_id"], "investigating", admin, strict=True)
        assert updated["resolved_at"] is None

        updated = await set_dispute_status(db, dispute["_id"], "resolved_buyer", admin, strict=True)
        assert updated["resolved_at"] is not None
        assert updated["resolved_by"] == admin["_id"]

        updated = await set_dispute_status(db, dispute["_id"], "closed", admin, strict=True)
        assert updated["status"] == "closed"

    async def test_strict_rejects_shortcut(self, db, dispute, admin):
        with pytest.raises(InvalidState) as exc_info:
            await set_dispute_status(db, dispute["_id"], "resolved_seller", admin, strict=True)
        assert exc_info.value.precondition == "allowed_successor"

    async def test_closed_is_final_when_strict(self, db, dispute, admin):
        await set_dispute_status(db, dispute["_id"], "closed", admin, strict=True)

        with pytest.raises(InvalidState):
            await set_dispute_status(db, dispute["_id"], "open", admin, strict=True)

    async def test_permissive_accepts_any_known_status(self, db, dispute, admin):
        updated = await set_dispute_status(db, dispute["_id"], "resolved_seller", admin, strict=False)
        assert updated["status"] == "resolved_seller"

        with pytest.raises(InvalidState) as exc_info:
            await set_dispute_status(db, dispute["_id"], "escalated", admin, strict=False)
        assert exc_info.value.precondition == "known_status"

    async def test_audited(self, db, dispute, admin):
        await set_dispute_status(db, dispute["_id"], "investigating", admin)

        entries = await list_audit_logs(db, entity_type="dispute", entity_id=str(dispute["_id"]))
        assert [e["action"] for e in entries] == ["dispute_status_changed", "dispute_opened"]


class TestResolution:
    async def test_resolution_written_once(self, db, dispute, admin):
        resolved = await add_dispute_resolution(db, dispute["_id"], "Refund issued to buyer", admin)
        assert resolved["resolution"] == "Refund issued to buyer"
        assert resolved["resolved_at"] is not None

        with pytest.raises(AlreadyResolved):
            await add_dispute_resolution(db, dispute["_id"], "Changed my mind", admin)

        assert (await get_dispute(db, dispute["_id"]))["resolution"] == "Refund issued to buyer"

    async def test_concurrent_resolutions(self, db, dispute, admin):
        results = await asyncio.gather(
            add_dispute_resolution(db, dispute["_id"], "first", admin),
            add_dispute_resolution(db, dispute["_id"], "second", admin),
            return_exceptions=True,
        )

        assert len([r for r in results if isinstance(r, dict)]) == 1
        assert len([r for r in results if isinstance(r, AlreadyResolved)]) == 1

    async def test_blank_text(self, db, dispute, admin):
        with pytest.raises(InvalidState):
            await add_dispute_resolution(db, dispute["_id"], "  ", admin)

    async def test_unknown_dispute(self, db, admin):
        with pytest.raises(NotFound):
            await add_dispute_resolution(db, "64b7f0c2a1b2c3d4e5f60718", "text", admin)

    async def test_audited(self, db, dispute, admin):
        await add_dispute_resolution(db, dispute["_id"], "Partial refund", admin)

        entries = await list_audit_logs(db, action="dispute_resolution_added")
        assert entries[0]["new_values"] == {"resolution": "Partial refund"}


class TestListing:
    async def test_scoped_by_party(self, db, dispute):
        assert len(await list_disputes(db, seller_id="seller-1")) == 1
        assert len(await list_disputes(db, seller_id="seller-2")) == 0
        assert len(await list_disputes(db, buyer_id="buyer-1", status="open")) == 1
