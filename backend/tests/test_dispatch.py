"""Tests for checkout side effects and driver dispatch."""

import pytest
from sqlalchemy.orm import Session

from restodesk.core.alerting import alert_manager
from restodesk.core.config import settings
from restodesk.core.errors import ConflictError, ValidationError
from restodesk.models.order import Order, OrderStatus, OrderStatusHistory, OrderType
from restodesk.services.order_service import OrderWorkflow, run_after_create


class TestDeliveryRequest:
    def test_build_delivery_request(self, workflow: OrderWorkflow, place_order, restaurant):
        order = place_order()

        request = workflow.build_delivery_request(order)

        assert request.pickup_address.street == "Rua Augusta"
        assert request.pickup_address.city == "São Paulo"
        assert request.delivery_address.street == "Rua Frei Caneca"
        assert request.delivery_address.has_coordinates
        assert request.order_value == 18.0
        assert request.order_number == order.order_number
        assert request.restaurant_phone == restaurant.phone
        assert [(i.name, i.quantity) for i in request.items] == [("Coxinha", 2)]


class TestEnsureDispatchable:
    def test_pending_order_needs_force(self, workflow: OrderWorkflow, place_order):
        order = place_order()
        with pytest.raises(ValidationError, match="confirmed or preparing"):
            workflow.ensure_dispatchable(order)
        workflow.ensure_dispatchable(order, force=True)

    def test_confirmed_order_is_dispatchable(self, workflow: OrderWorkflow, place_order):
        order = place_order(status=OrderStatus.CONFIRMED, order_number="POS-1")
        workflow.ensure_dispatchable(order)

    def test_existing_driver_request_conflicts(self, db_session: Session, workflow: OrderWorkflow, place_order):
        order = place_order(status=OrderStatus.PREPARING, order_number="POS-1")
        order.delivery_provider = "lalamove"
        order.provider_order_id = "LLM-123"
        db_session.commit()
        with pytest.raises(ConflictError):
            workflow.ensure_dispatchable(order)

    def test_takeaway_is_never_dispatchable(self, workflow: OrderWorkflow, place_order):
        order = place_order(type=OrderType.TAKEAWAY, delivery_address=None)
        with pytest.raises(ValidationError):
            workflow.ensure_dispatchable(order, force=True)


class TestDispatchDriver:
    @pytest.mark.asyncio
    async def test_successful_dispatch_updates_order(
        self, db_session: Session, workflow: OrderWorkflow, place_order, notifier
    ):
        order = place_order(status=OrderStatus.CONFIRMED, order_number="POS-1")

        response = await workflow.dispatch_driver(order, "lalamove", changed_by="staff")

        assert response.success is True
        assert order.status == OrderStatus.DRIVER_DISPATCHED
        assert order.delivery_provider == "lalamove"
        assert order.provider_order_id == "lalamove-1"
        assert order.tracking_url == "https://track.example.com/lalamove-1"
        assert order.driver_info["name"] == "João Lima"
        assert notifier.kinds == ["driver_dispatched"]
        assert notifier.sent[0].recipient == order.customer_phone
        assert "https://track.example.com/lalamove-1" in notifier.sent[0].message

        last = db_session.query(OrderStatusHistory).order_by(OrderStatusHistory.id.desc()).first()
        assert last.status == OrderStatus.DRIVER_DISPATCHED
        assert last.changed_by == "staff"

    @pytest.mark.asyncio
    async def test_provider_failure_marks_order_and_alerts(
        self, workflow: OrderWorkflow, place_order, courier, notifier, restaurant
    ):
        courier.dispatch = "fail"
        order = place_order(status=OrderStatus.CONFIRMED, order_number="POS-1")

        response = await workflow.dispatch_driver(order, "lalamove")

        assert response.success is False
        assert order.status == OrderStatus.DRIVER_DISPATCH_FAILED
        assert order.provider_order_id is None

        alerts = alert_manager.get_recent(restaurant_id=restaurant.id)
        assert len(alerts) == 1
        assert alerts[0]["source"] == "dispatch"
        assert alerts[0]["order_id"] == order.id

        assert notifier.kinds == ["driver_dispatch_failed"]
        assert notifier.sent[0].recipient == restaurant.phone
        assert "No drivers available" in notifier.sent[0].message

    @pytest.mark.asyncio
    async def test_provider_exception_becomes_failed_response(
        self, workflow: OrderWorkflow, place_order, courier
    ):
        courier.dispatch = "raise"
        order = place_order(status=OrderStatus.CONFIRMED, order_number="POS-1")

        response = await workflow.dispatch_driver(order, "lalamove")

        assert response.success is False
        assert "upstream timeout" in response.error
        assert order.status == OrderStatus.DRIVER_DISPATCH_FAILED


class TestCheckoutSideEffects:
    @pytest.mark.asyncio
    async def test_card_payment_notifies_without_dispatch(
        self, workflow: OrderWorkflow, place_order, notifier, restaurant
    ):
        order = place_order(payment_method="card")

        report = await workflow.run_order_side_effects(order)

        assert report.get("notify:new_order").success is True
        assert report.get("dispatch").skipped is True
        assert report.all_succeeded
        assert notifier.kinds == ["new_order"]
        assert notifier.sent[0].recipient == restaurant.phone
        assert order.status == OrderStatus.PENDING

    @pytest.mark.asyncio
    async def test_pix_delivery_dispatches_local_driver(
        self, db_session: Session, workflow: OrderWorkflow, place_order, notifier, monkeypatch
    ):
        monkeypatch.setattr(settings, "dispatch_provider", "local")
        order = place_order(payment_method="pix")

        report = await workflow.run_order_side_effects(order)

        assert report.get("dispatch").success is True
        assert order.status == OrderStatus.DRIVER_DISPATCHED
        assert order.delivery_provider == "local"
        assert order.provider_order_id.startswith("local_order_")
        assert order.tracking_url.endswith(order.order_number)
        assert order.driver_info["name"] == "Carlos Santos"
        assert notifier.kinds == ["new_order", "driver_dispatched"]

        history = db_session.query(OrderStatusHistory).filter_by(order_id=order.id).all()
        assert [h.status for h in history] == [OrderStatus.PENDING, OrderStatus.DRIVER_DISPATCHED]
        assert history[-1].changed_by == "system"

    @pytest.mark.asyncio
    async def test_takeaway_is_not_dispatched(self, workflow: OrderWorkflow, place_order):
        order = place_order(payment_method="cash", type=OrderType.TAKEAWAY, delivery_address=None)
        report = await workflow.run_order_side_effects(order)
        assert report.get("dispatch").skipped is True

    @pytest.mark.asyncio
    async def test_ready_order_is_not_dispatched_at_checkout(self, workflow: OrderWorkflow, place_order):
        order = place_order(payment_method="pix", status=OrderStatus.READY, order_number="POS-9")
        report = await workflow.run_order_side_effects(order)
        assert report.get("dispatch").skipped is True
        assert order.status == OrderStatus.READY

    @pytest.mark.asyncio
    async def test_failed_notification_does_not_block_dispatch(
        self, db_session: Session, place_order, failing_notifier, delivery, monkeypatch
    ):
        monkeypatch.setattr(settings, "dispatch_provider", "lalamove")
        order = place_order(payment_method="pix")
        workflow = OrderWorkflow(db_session, failing_notifier, delivery)

        report = await workflow.run_order_side_effects(order)

        assert report.get("notify:new_order").success is False
        assert report.get("dispatch").success is True
        assert not report.all_succeeded
        assert order.status == OrderStatus.DRIVER_DISPATCHED

    @pytest.mark.asyncio
    async def test_unknown_dispatch_provider_is_reported(
        self, workflow: OrderWorkflow, place_order, monkeypatch
    ):
        monkeypatch.setattr(settings, "dispatch_provider", "carrier-pigeon")
        order = place_order(payment_method="pix")

        report = await workflow.run_order_side_effects(order)

        outcome = report.get("dispatch")
        assert outcome.success is False
        assert "carrier-pigeon" in outcome.detail
        assert order.status == OrderStatus.PENDING

    @pytest.mark.asyncio
    async def test_local_pool_runs_out_of_drivers(self, workflow: OrderWorkflow, place_order, monkeypatch):
        monkeypatch.setattr(settings, "dispatch_provider", "local")
        orders = [place_order(payment_method="pix", order_number=f"POS-{n}") for n in range(3)]

        reports = [await workflow.run_order_side_effects(o) for o in orders]

        assert [r.get("dispatch").success for r in reports] == [True, True, False]
        assert reports[2].get("dispatch").detail == "No drivers available"
        assert orders[2].status == OrderStatus.DRIVER_DISPATCH_FAILED

    @pytest.mark.asyncio
    async def test_run_after_create_in_fresh_session(
        self, db_session: Session, session_factory, place_order, notifier, delivery, monkeypatch
    ):
        monkeypatch.setattr(settings, "dispatch_provider", "lalamove")
        order = place_order(payment_method="cash")

        report = await run_after_create(session_factory, order.id, notifier, delivery)

        assert report.order_id == order.id
        assert report.all_succeeded
        db_session.expire_all()
        stored = db_session.get(Order, order.id)
        assert stored.status == OrderStatus.DRIVER_DISPATCHED
        assert stored.provider_order_id == "lalamove-1"

    @pytest.mark.asyncio
    async def test_run_after_create_missing_order(self, session_factory, restaurant, notifier, delivery):
        assert await run_after_create(session_factory, 404, notifier, delivery) is None


class TestDriverRelease:
    """Local pool drivers go back to the pool when their order is finished."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("finished", [
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
        OrderStatus.DELIVERY_FAILED,
    ])
    async def test_finished_orders_free_their_drivers(
        self, workflow: OrderWorkflow, place_order, local_pool, finished
    ):
        first, second, third = (
            place_order(status=OrderStatus.CONFIRMED, order_number=f"POS-{n}") for n in range(3)
        )
        await workflow.dispatch_driver(first, "local")
        await workflow.dispatch_driver(second, "local")
        assert local_pool.available_drivers() == []

        workflow.transition_status(first, finished)
        workflow.transition_status(second, finished)
        assert len(local_pool.available_drivers()) == 2

        response = await workflow.dispatch_driver(third, "local")
        assert response.success is True
        assert third.status == OrderStatus.DRIVER_DISPATCHED

    @pytest.mark.asyncio
    async def test_in_flight_orders_keep_their_drivers(self, workflow: OrderWorkflow, place_order, local_pool):
        order = place_order(status=OrderStatus.CONFIRMED, order_number="POS-1")
        await workflow.dispatch_driver(order, "local")

        workflow.transition_status(order, OrderStatus.OUT_FOR_DELIVERY)

        assert len(local_pool.available_drivers()) == 1

    @pytest.mark.asyncio
    async def test_courier_orders_are_left_alone(self, workflow: OrderWorkflow, place_order, local_pool):
        order = place_order(status=OrderStatus.CONFIRMED, order_number="POS-1")
        await workflow.dispatch_driver(order, "lalamove")

        assert workflow.transition_status(order, OrderStatus.DELIVERED) is True
        assert len(local_pool.available_drivers()) == 2


class TestDispatchWithEnforcedTransitions:
    @pytest.mark.asyncio
    async def test_booked_driver_is_recorded_from_any_status(
        self, workflow: OrderWorkflow, place_order, monkeypatch
    ):
        monkeypatch.setattr(settings, "enforce_status_transitions", True)
        order = place_order(status=OrderStatus.CONFIRMED, order_number="POS-1")
        workflow.transition_status(order, OrderStatus.READY)
        workflow.transition_status(order, OrderStatus.DELIVERED)

        response = await workflow.dispatch_driver(order, "lalamove")

        assert response.success is True
        assert order.status == OrderStatus.DRIVER_DISPATCHED
        assert order.provider_order_id == "lalamove-1"

    @pytest.mark.asyncio
    async def test_failed_dispatch_is_recorded_from_any_status(
        self, workflow: OrderWorkflow, place_order, courier, monkeypatch
    ):
        monkeypatch.setattr(settings, "enforce_status_transitions", True)
        courier.dispatch = "fail"
        order = place_order(status=OrderStatus.CONFIRMED, order_number="POS-1")
        workflow.transition_status(order, OrderStatus.CANCELLED)

        response = await workflow.dispatch_driver(order, "lalamove")

        assert response.success is False
        assert order.status == OrderStatus.DRIVER_DISPATCH_FAILED
