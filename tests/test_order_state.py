"""Unit tests for order / payment state transitions (State Pattern)."""

import itertools
from datetime import datetime, timedelta, timezone

import pytest

from wali.domain.dispatch import is_vehicle_compatible, vehicle_capacity_kg
from wali.domain.entities import Order, OrderItem, PaymentTransaction, User
from wali.domain.enums import (
    ORDER_TRANSITIONS,
    TERMINAL_ORDER_STATUSES,
    NotificationType,
    OrderStatus,
    PaymentProvider,
    TransactionStatus,
    UserRole,
    VehicleType,
)
from wali.domain.errors import InvalidTransitionError, TerminalStateError
from wali.domain.notifications import status_notifications


class TestOrderStateMachine:
    def test_initial_status_is_pending(self):
        assert Order().status == OrderStatus.PENDING

    @pytest.mark.parametrize(
        "current, nxt",
        list(itertools.product(OrderStatus, OrderStatus)),
        ids=lambda s: s.value,
    )
    def test_every_pair(self, current, nxt):
        order = Order(status=current)
        if nxt in ORDER_TRANSITIONS[current]:
            order.check_transition(nxt)
            assert order.can_transition_to(nxt)
        elif current in TERMINAL_ORDER_STATUSES:
            with pytest.raises(TerminalStateError):
                order.check_transition(nxt)
        else:
            with pytest.raises(InvalidTransitionError) as exc:
                order.check_transition(nxt)
            assert not isinstance(exc.value, TerminalStateError)
        # checking never moves the order
        assert order.status == current

    def test_terminal_statuses(self):
        assert TERMINAL_ORDER_STATUSES == {
            OrderStatus.DELIVERED,
            OrderStatus.CANCELLED,
            OrderStatus.FAILED,
        }

    # ── Valid transitions ─────────────────────────────────────────

    @pytest.mark.parametrize(
        "current, nxt",
        [
            (OrderStatus.PENDING, OrderStatus.ACCEPTED),
            (OrderStatus.PENDING, OrderStatus.ASSIGNED),
            (OrderStatus.ASSIGNED, OrderStatus.ACCEPTED),
            (OrderStatus.ASSIGNED, OrderStatus.PICKUP_IN_PROGRESS),
            (OrderStatus.ACCEPTED, OrderStatus.PICKUP_IN_PROGRESS),
            (OrderStatus.PICKUP_IN_PROGRESS, OrderStatus.PICKED_UP),
            (OrderStatus.PICKED_UP, OrderStatus.DELIVERY_IN_PROGRESS),
            (OrderStatus.DELIVERY_IN_PROGRESS, OrderStatus.DELIVERED),
        ],
    )
    def test_forward_steps(self, current, nxt):
        assert Order(status=current).can_transition_to(nxt)

    @pytest.mark.parametrize(
        "current",
        [
            OrderStatus.PENDING,
            OrderStatus.ASSIGNED,
            OrderStatus.ACCEPTED,
            OrderStatus.PICKUP_IN_PROGRESS,
            OrderStatus.PICKED_UP,
            OrderStatus.DELIVERY_IN_PROGRESS,
        ],
    )
    def test_cancel_from_any_open_status(self, current):
        Order(status=current).check_transition(OrderStatus.CANCELLED)

    def test_failed_once_on_the_road(self):
        Order(status=OrderStatus.PICKED_UP).check_transition(OrderStatus.FAILED)

    # ── Invalid transitions ───────────────────────────────────────

    def test_skipping_a_step_fails(self):
        with pytest.raises(InvalidTransitionError, match="ACCEPTED -> PICKED_UP"):
            Order(status=OrderStatus.ACCEPTED).check_transition(OrderStatus.PICKED_UP)

    def test_going_back_fails(self):
        with pytest.raises(InvalidTransitionError):
            Order(status=OrderStatus.PICKED_UP).check_transition(OrderStatus.ACCEPTED)

    def test_pending_cannot_fail(self):
        with pytest.raises(InvalidTransitionError):
            Order(status=OrderStatus.PENDING).check_transition(OrderStatus.FAILED)

    @pytest.mark.parametrize(
        "terminal", [OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.FAILED]
    )
    def test_terminal_states_are_final(self, terminal):
        order = Order(order_number="WAL-2024-ABC123", status=terminal)
        assert order.is_terminal
        with pytest.raises(TerminalStateError, match="WAL-2024-ABC123"):
            order.check_transition(OrderStatus.CANCELLED)

    def test_terminal_error_is_an_invalid_transition(self):
        assert issubclass(TerminalStateError, InvalidTransitionError)
        assert TerminalStateError.http_status == 409

    # ── Derived values ────────────────────────────────────────────

    def test_totals_are_derived_from_items(self):
        order = Order(
            items=[
                OrderItem(name="Attiéké", quantity=3, weight_kg=0.5, value=500),
                OrderItem(name="Poisson braisé", quantity=1, weight_kg=1.2, value=3000),
            ]
        )
        assert order.total_weight == pytest.approx(2.7)
        assert order.total_value == 4500

    def test_participants(self):
        order = Order(client_id=1, driver_id=2)
        assert order.is_participant(User(id=1))
        assert order.is_participant(User(id=2, role=UserRole.DRIVER))
        assert not order.is_participant(User(id=3))

    def test_no_driver_means_no_driver_participant(self):
        order = Order(client_id=1)
        assert not order.is_participant(User(id=0, role=UserRole.DRIVER))


class TestPaymentStateMachine:
    def _tx(self, status=TransactionStatus.PENDING, **kwargs):
        return PaymentTransaction(
            order_id=1,
            user_id=1,
            amount=2865,
            provider=PaymentProvider.ORANGE_MONEY,
            reference="WALI-1-ABCD1234",
            status=status,
            **kwargs,
        )

    def test_pending_to_processing_to_completed(self):
        tx = self._tx()
        tx.transition_to(TransactionStatus.PROCESSING)
        tx.transition_to(TransactionStatus.COMPLETED)
        assert tx.is_terminal

    def test_processing_cannot_go_back_to_pending(self):
        tx = self._tx(TransactionStatus.PROCESSING)
        with pytest.raises(InvalidTransitionError):
            tx.transition_to(TransactionStatus.PENDING)

    @pytest.mark.parametrize(
        "terminal",
        [
            TransactionStatus.COMPLETED,
            TransactionStatus.FAILED,
            TransactionStatus.EXPIRED,
            TransactionStatus.CANCELLED,
        ],
    )
    def test_settled_payments_are_final(self, terminal):
        tx = self._tx(terminal)
        with pytest.raises(TerminalStateError, match="WALI-1-ABCD1234"):
            tx.transition_to(TransactionStatus.COMPLETED)

    def test_expiry(self):
        now = datetime(2024, 1, 10, 10, 0, tzinfo=timezone.utc)
        tx = self._tx(TransactionStatus.PROCESSING, expires_at=now + timedelta(minutes=30))
        assert not tx.is_expired(now)
        assert tx.is_expired(now + timedelta(minutes=30))

    def test_settled_payment_never_expires(self):
        now = datetime(2024, 1, 10, 10, 0, tzinfo=timezone.utc)
        tx = self._tx(TransactionStatus.COMPLETED, expires_at=now)
        assert not tx.is_expired(now + timedelta(hours=1))


class TestStatusNotifications:
    def _order(self, **kwargs):
        values = dict(id=7, order_number="WAL-2024-0A1B2C", client_id=1)
        values.update(kwargs)
        return Order(**values)

    def test_creation_notifies_client_only(self):
        notes = status_notifications(self._order(), OrderStatus.PENDING, actor_id=1)
        assert [(n.user_id, n.type) for n in notes] == [(1, NotificationType.ORDER_CREATED)]
        assert "WAL-2024-0A1B2C" in notes[0].body
        assert notes[0].title == "Commande créée"

    def test_accepting_driver_is_not_told_about_own_action(self):
        order = self._order(driver_id=2, status=OrderStatus.ACCEPTED)
        notes = status_notifications(order, OrderStatus.ACCEPTED, actor_id=2)
        assert [n.user_id for n in notes] == [1]
        assert notes[0].type == NotificationType.ORDER_STATUS

    def test_assignment_notifies_client_and_driver(self):
        order = self._order(driver_id=2, status=OrderStatus.ASSIGNED)
        notes = status_notifications(order, OrderStatus.ASSIGNED, actor_id=99)
        assert sorted(n.user_id for n in notes) == [1, 2]

    def test_client_cancel_notifies_driver(self):
        order = self._order(driver_id=2, status=OrderStatus.CANCELLED)
        notes = status_notifications(order, OrderStatus.CANCELLED, actor_id=1)
        assert sorted(n.user_id for n in notes) == [1, 2]

    def test_driver_hears_nothing_about_progress_steps(self):
        order = self._order(driver_id=2, status=OrderStatus.PICKED_UP)
        notes = status_notifications(order, OrderStatus.PICKED_UP, actor_id=99)
        assert [n.user_id for n in notes] == [1]

    def test_payload_is_camel_case(self):
        payload = status_notifications(self._order(), OrderStatus.PENDING)[0].to_dict()
        assert payload["userId"] == 1
        assert payload["orderId"] == 7
        assert payload["type"] == "ORDER_CREATED"
        assert payload["data"] == {"status": "PENDING", "orderNumber": "WAL-2024-0A1B2C"}


class TestDispatchRules:
    def test_no_preference_accepts_any_vehicle(self):
        order = Order()
        assert is_vehicle_compatible(order, VehicleType.VELO)
        assert is_vehicle_compatible(order, None)

    def test_preference_must_match(self):
        order = Order(preferred_vehicle_type=VehicleType.VOITURE)
        assert is_vehicle_compatible(order, VehicleType.VOITURE)
        assert not is_vehicle_compatible(order, VehicleType.MOTO)

    def test_capacities(self):
        assert vehicle_capacity_kg(VehicleType.MOTO) == 15
        assert vehicle_capacity_kg(VehicleType.CAMIONNETTE) == 500
