"""Order status transitions: the table itself and the compare-and-swap write."""

import itertools

import pytest

from storefront.core.errors import ErrorKind, InvalidTransition
from storefront.db.repositories.orders import get_order_by_id
from storefront.domain.orders.state_machine import (
    STATUS_TRANSITIONS,
    TERMINAL_STATUSES,
    OrderStatus,
    allowed_targets,
    assert_can_transition,
    transition,
)

LEGAL_PAIRS = [(source, target) for source, targets in STATUS_TRANSITIONS.items() for target in targets]
ILLEGAL_PAIRS = [
    (source, target)
    for source, target in itertools.product(OrderStatus, OrderStatus)
    if target not in STATUS_TRANSITIONS[source]
]


class TestTransitionTable:
    def test_every_status_has_an_entry(self):
        assert set(STATUS_TRANSITIONS) == set(OrderStatus)

    def test_terminal_statuses(self):
        assert TERMINAL_STATUSES == {OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.REFUNDED}

    def test_pending_targets(self):
        assert allowed_targets("PENDING") == {OrderStatus.PAID, OrderStatus.CANCELLED}

    @pytest.mark.parametrize("source,target", LEGAL_PAIRS)
    def test_legal_pairs_pass(self, source, target):
        assert_can_transition(source, target)

    @pytest.mark.parametrize("source,target", ILLEGAL_PAIRS)
    def test_illegal_pairs_raise(self, source, target):
        with pytest.raises(InvalidTransition) as exc_info:
            assert_can_transition(source, target)
        assert exc_info.value.kind is ErrorKind.INVALID_TRANSITION
        assert exc_info.value.allowed == STATUS_TRANSITIONS[source]

    def test_pending_to_shipped_lists_valid_targets(self):
        with pytest.raises(InvalidTransition) as exc_info:
            assert_can_transition(OrderStatus.PENDING, OrderStatus.SHIPPED)

        exc = exc_info.value
        assert exc.source is OrderStatus.PENDING
        assert exc.target is OrderStatus.SHIPPED
        assert exc.allowed == {OrderStatus.PAID, OrderStatus.CANCELLED}
        assert exc.to_dict()["allowed"] == ["CANCELLED", "PAID"]
        assert "PENDING -> SHIPPED" in exc.message

    def test_terminal_message_says_none(self):
        with pytest.raises(InvalidTransition) as exc_info:
            assert_can_transition(OrderStatus.DELIVERED, OrderStatus.REFUNDED)
        assert exc_info.value.message.endswith("Valid: none")


class TestTransitionWrite:
    @pytest.mark.parametrize("source,target", LEGAL_PAIRS)
    async def test_legal_transition_is_persisted(self, db, make_order, source, target):
        order = await make_order(status=source.value)

        updated = await transition(db, order, target)

        assert updated.status == target.value
        stored = await get_order_by_id(db, order.id)
        assert stored.status == target.value

    @pytest.mark.parametrize(
        "source,target",
        [
            (OrderStatus.PENDING, OrderStatus.SHIPPED),
            (OrderStatus.PAID, OrderStatus.PENDING),
            (OrderStatus.CANCELLED, OrderStatus.PAID),
            (OrderStatus.DELIVERED, OrderStatus.REFUNDED),
        ],
    )
    async def test_illegal_transition_leaves_status_unchanged(self, db, make_order, source, target):
        order = await make_order(status=source.value)

        with pytest.raises(InvalidTransition):
            await transition(db, order, target)

        stored = await get_order_by_id(db, order.id)
        assert stored.status == source.value

    async def test_extra_values_written_with_the_status(self, db, make_order):
        order = await make_order()

        updated = await transition(db, order, OrderStatus.PAID, payment_reference="pi_123")

        assert updated.payment_reference == "pi_123"

    async def test_uncommitted_transition_is_discarded_by_rollback(self, db, make_order):
        order = await make_order()
        order_id = order.id

        updated = await transition(db, order, OrderStatus.PAID, commit=False)
        assert updated.status == "PAID"
        await db.rollback()

        assert (await get_order_by_id(db, order_id)).status == "PENDING"

    async def test_losing_writer_session_stays_usable(self, session_factory, make_order):
        order = await make_order()

        async with session_factory() as first, session_factory() as second:
            seen_by_second = await get_order_by_id(second, order.id)
            await transition(first, await get_order_by_id(first, order.id), OrderStatus.PAID)

            with pytest.raises(InvalidTransition):
                await transition(second, seen_by_second, OrderStatus.CANCELLED)

            # same session, fresh read after the rollback
            current = await get_order_by_id(second, order.id)
            assert current.status == "PAID"
            processing = await transition(second, current, OrderStatus.PROCESSING)

        assert processing.status == "PROCESSING"

    async def test_stale_read_loses_against_concurrent_writer(self, session_factory, make_order):
        order = await make_order()

        async with session_factory() as first, session_factory() as second:
            seen_by_first = await get_order_by_id(first, order.id)
            seen_by_second = await get_order_by_id(second, order.id)

            await transition(first, seen_by_first, OrderStatus.CANCELLED)

            with pytest.raises(InvalidTransition) as exc_info:
                await transition(second, seen_by_second, OrderStatus.PAID)

        # evaluated against the stored status, not the stale one
        assert exc_info.value.source is OrderStatus.CANCELLED
        assert exc_info.value.allowed == frozenset()

    def test_status_attribute_cannot_be_assigned(self):
        from storefront.db.models.orders import Order

        order = Order(status="PENDING")
        with pytest.raises(ValueError):
            order.status = "PAID"
