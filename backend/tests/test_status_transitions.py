"""Tests for order status changes and the status history log."""

import logging
from datetime import datetime, timezone

import pytest
from sqlalchemy.orm import Session

from restodesk.core.config import settings
from restodesk.core.errors import InvalidTransitionError, ValidationError
from restodesk.models.order import (
    HistoryImmutableError,
    OrderStatus,
    OrderStatusHistory,
    is_allowed_transition,
)
from restodesk.services import order_service
from restodesk.services.order_service import OrderWorkflow, run_after_transition


def _history(db_session: Session, order) -> list:
    return (
        db_session.query(OrderStatusHistory)
        .filter(OrderStatusHistory.order_id == order.id)
        .order_by(OrderStatusHistory.id)
        .all()
    )


class TestTransitionStatus:
    def test_transition_appends_history(self, db_session: Session, workflow: OrderWorkflow, place_order):
        order = place_order()

        changed = workflow.transition_status(order, OrderStatus.CONFIRMED, notes="Aceito", changed_by="caixa")

        assert changed is True
        assert order.status == OrderStatus.CONFIRMED
        history = _history(db_session, order)
        assert [h.status for h in history] == [OrderStatus.PENDING, OrderStatus.CONFIRMED]
        assert history[-1].changed_by == "caixa"
        assert history[-1].notes == "Aceito"

    def test_same_status_is_a_no_op(self, db_session: Session, workflow: OrderWorkflow, place_order):
        order = place_order()
        assert workflow.transition_status(order, "pending") is False
        assert len(_history(db_session, order)) == 1

    def test_accepts_legacy_upper_case_names(self, workflow: OrderWorkflow, place_order):
        order = place_order()
        workflow.transition_status(order, "PREPARING")
        assert order.status == OrderStatus.PREPARING

    def test_unknown_status_is_rejected(self, db_session: Session, workflow: OrderWorkflow, place_order):
        order = place_order()
        with pytest.raises(ValidationError, match="Valid statuses"):
            workflow.transition_status(order, "teleported")
        assert order.status == OrderStatus.PENDING
        assert len(_history(db_session, order)) == 1

    def test_delivered_stamps_delivered_at(self, workflow: OrderWorkflow, place_order):
        order = place_order()
        workflow.transition_status(order, OrderStatus.READY)
        workflow.transition_status(order, OrderStatus.DELIVERED)
        assert order.delivered_at is not None

    def test_cancel_records_reason(self, workflow: OrderWorkflow, place_order):
        order = place_order()
        workflow.transition_status(order, OrderStatus.CANCELLED, notes="Cliente desistiu")
        assert order.cancellation_reason == "Cliente desistiu"

    def test_cancel_without_notes_uses_default_reason(self, workflow: OrderWorkflow, place_order):
        order = place_order()
        workflow.transition_status(order, OrderStatus.CANCELLED)
        assert order.cancellation_reason == settings.default_cancellation_reason


class TestTransitionGraph:
    def test_graph_edges(self):
        assert is_allowed_transition(OrderStatus.PENDING, OrderStatus.CONFIRMED)
        assert is_allowed_transition(OrderStatus.DRIVER_DISPATCHED, OrderStatus.DRIVER_ASSIGNED)
        assert not is_allowed_transition(OrderStatus.DELIVERED, OrderStatus.PENDING)
        assert not is_allowed_transition(OrderStatus.REFUNDED, OrderStatus.CANCELLED)

    def test_off_graph_move_is_logged_when_not_enforced(
        self, workflow: OrderWorkflow, place_order, monkeypatch, caplog
    ):
        monkeypatch.setattr(settings, "enforce_status_transitions", False)
        order = place_order()

        with caplog.at_level(logging.WARNING, logger="restodesk.services.order_service"):
            assert workflow.transition_status(order, OrderStatus.DELIVERED) is True

        assert order.status == OrderStatus.DELIVERED
        assert any("Off-graph" in r.getMessage() for r in caplog.records)

    def test_off_graph_move_is_refused_when_enforced(
        self, db_session: Session, workflow: OrderWorkflow, place_order, monkeypatch
    ):
        monkeypatch.setattr(settings, "enforce_status_transitions", True)
        order = place_order()

        with pytest.raises(InvalidTransitionError) as exc_info:
            workflow.transition_status(order, OrderStatus.DELIVERED)

        assert exc_info.value.current == "pending"
        assert exc_info.value.target == "delivered"
        assert order.status == OrderStatus.PENDING
        assert len(_history(db_session, order)) == 1

    def test_on_graph_move_allowed_when_enforced(self, workflow: OrderWorkflow, place_order, monkeypatch):
        monkeypatch.setattr(settings, "enforce_status_transitions", True)
        order = place_order()
        assert workflow.transition_status(order, OrderStatus.CONFIRMED) is True


class TestStatusHistory:
    def test_timestamps_strictly_increase_with_frozen_clock(
        self, db_session: Session, workflow: OrderWorkflow, place_order, monkeypatch
    ):
        frozen = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
        monkeypatch.setattr(order_service, "utcnow", lambda: frozen)
        order = place_order()

        for status in (OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.READY):
            workflow.transition_status(order, status)

        stamps = [h.created_at for h in _history(db_session, order)]
        assert len(stamps) == 4
        assert all(earlier < later for earlier, later in zip(stamps, stamps[1:]))

    def test_get_history_in_order(self, workflow: OrderWorkflow, place_order):
        order = place_order()
        workflow.transition_status(order, OrderStatus.CONFIRMED)
        workflow.transition_status(order, OrderStatus.CANCELLED)

        statuses = [h.status for h in workflow.get_history(order)]
        assert statuses == [OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.CANCELLED]

    def test_history_rows_cannot_be_updated(self, db_session: Session, place_order):
        order = place_order()
        entry = _history(db_session, order)[0]
        entry.notes = "rewritten"
        with pytest.raises(HistoryImmutableError):
            db_session.flush()
        db_session.rollback()

    def test_history_rows_cannot_be_deleted(self, db_session: Session, place_order):
        order = place_order()
        entry = _history(db_session, order)[0]
        db_session.delete(entry)
        with pytest.raises(HistoryImmutableError):
            db_session.flush()
        db_session.rollback()


class TestStatusNotifications:
    @pytest.mark.asyncio
    async def test_notify_status_sends_matching_message(self, workflow: OrderWorkflow, place_order, notifier):
        order = place_order()
        workflow.transition_status(order, OrderStatus.CONFIRMED)

        outcome = await workflow.notify_status(order, OrderStatus.CONFIRMED)

        assert outcome.success is True
        assert outcome.name == "notify:order_confirmed"
        assert notifier.sent[-1].recipient == order.customer_phone

    @pytest.mark.asyncio
    async def test_status_without_message_is_skipped(self, workflow: OrderWorkflow, place_order, notifier):
        order = place_order()
        outcome = await workflow.notify_status(order, OrderStatus.REFUNDED)
        assert outcome.skipped is True
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_notification_error_does_not_escape(
        self, db_session: Session, place_order, failing_notifier, delivery
    ):
        order = place_order()
        workflow = OrderWorkflow(db_session, failing_notifier, delivery)
        workflow.transition_status(order, OrderStatus.CONFIRMED)

        outcome = await workflow.notify_status(order, OrderStatus.CONFIRMED)

        assert outcome.success is False
        assert "sms gateway down" in outcome.detail
        assert order.status == OrderStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_run_after_transition_uses_fresh_session(self, session_factory, place_order, notifier):
        order = place_order()

        outcome = await run_after_transition(session_factory, order.id, OrderStatus.READY, notifier)

        assert outcome.name == "notify:order_ready"
        assert notifier.kinds == ["order_ready"]

    @pytest.mark.asyncio
    async def test_run_after_transition_missing_order(self, session_factory, restaurant, notifier):
        assert await run_after_transition(session_factory, 404, OrderStatus.READY, notifier) is None
        assert notifier.sent == []
