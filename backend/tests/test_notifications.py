"""Tests for order notifications: templates, recipients and SMS gateways."""

import json
from urllib.parse import parse_qs

import httpx
import pytest
from sqlalchemy.orm import Session

from restodesk.models.order import OrderStatus, OrderType
from restodesk.services.notification_service import (
    MessageTemplates,
    NotificationKind,
    NotificationService,
)

from conftest import CUSTOMER_PHONE, RESTAURANT_PHONE


def gateway(status_code: int = 200, seen: list = None) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status_code, json={"ok": status_code < 400})
    return httpx.MockTransport(handler)


class TestTemplates:
    @pytest.fixture
    def templates(self) -> MessageTemplates:
        return MessageTemplates("Cantina Teste", support_phone="+551130000000")

    def test_new_order_lists_items_and_address(self, templates: MessageTemplates, place_order):
        order = place_order(payment_method="pix")
        text = templates.render(order, NotificationKind.NEW_ORDER)

        assert order.order_number in text
        assert "Maria Souza" in text
        assert "R$ 18.00" in text
        assert "Rua Frei Caneca, 200 - Consolação" in text
        assert "- Coxinha (x2) - R$ 13.00" in text
        assert "Pagamento: pix" in text
        assert text.endswith("\n\nCantina Teste")

    def test_new_takeaway_order_shows_type(self, templates: MessageTemplates, place_order):
        order = place_order(type=OrderType.TAKEAWAY, delivery_address=None)
        assert "Tipo: takeaway" in templates.render(order, NotificationKind.NEW_ORDER)

    def test_ready_message_depends_on_order_type(self, templates: MessageTemplates, place_order):
        delivery = place_order()
        takeaway = place_order(type=OrderType.TAKEAWAY, delivery_address=None)

        assert "Aguardando o motorista" in templates.render(delivery, NotificationKind.ORDER_READY)
        assert "retirada" in templates.render(takeaway, NotificationKind.ORDER_READY)

    def test_driver_dispatched_with_driver_and_tracking(self, templates: MessageTemplates, place_order):
        order = place_order()
        text = templates.render(
            order, NotificationKind.DRIVER_DISPATCHED,
            driver={"name": "Ana Oliveira", "phone": "+5511977777777", "vehicle": "Moto", "plate": "DEF9012"},
            tracking_url="http://localhost:3000/tracking/ORD-1",
        )
        assert "Motorista: Ana Oliveira" in text
        assert "Veículo: Moto - DEF9012" in text
        assert "http://localhost:3000/tracking/ORD-1" in text

    def test_delivery_failed_includes_reason_and_support(self, templates: MessageTemplates, place_order):
        order = place_order()
        text = templates.render(order, NotificationKind.DELIVERY_FAILED, reason="Cliente ausente")
        assert "Motivo: Cliente ausente" in text
        assert "SAC: +551130000000" in text

    def test_every_kind_renders(self, templates: MessageTemplates, place_order):
        order = place_order()
        for kind in NotificationKind:
            assert order.order_number in templates.render(order, kind)


class TestRecipients:
    @pytest.mark.asyncio
    async def test_restaurant_kinds_go_to_restaurant(self, notifier, place_order):
        order = place_order()
        result = await notifier.send_order_notification(order, NotificationKind.NEW_ORDER)

        assert result.success is True
        assert result.recipient == RESTAURANT_PHONE
        assert result.kind == "new_order"
        assert result.metadata["priority"] == "high"
        assert result.metadata["order_number"] == order.order_number

    @pytest.mark.asyncio
    async def test_customer_kinds_go_to_customer(self, notifier, place_order):
        order = place_order()
        result = await notifier.send_order_notification(order, NotificationKind.ORDER_CONFIRMED)
        assert result.recipient == CUSTOMER_PHONE
        assert result.metadata["priority"] == "medium"

    @pytest.mark.asyncio
    async def test_restaurant_without_phone_uses_configured_number(
        self, db_session: Session, notifier, place_order, restaurant
    ):
        restaurant.phone = None
        db_session.commit()
        order = place_order()

        result = await notifier.send_order_notification(order, NotificationKind.NEW_ORDER)
        assert result.recipient == notifier.restaurant_phone

    @pytest.mark.asyncio
    async def test_missing_customer_phone_fails_without_sending(self, notifier, place_order):
        order = place_order(customer_phone=None, type=OrderType.TAKEAWAY, delivery_address=None)

        result = await notifier.send_order_notification(order, NotificationKind.ORDER_READY)

        assert result.success is False
        assert result.error == "No recipient phone number"

    @pytest.mark.asyncio
    async def test_status_notification(self, notifier, place_order):
        order = place_order()
        result = await notifier.send_status_notification(order, OrderStatus.PREPARING)
        assert result.kind == "order_preparing"
        assert await notifier.send_status_notification(order, OrderStatus.REFUNDED) is None
        assert await notifier.send_status_notification(order, OrderStatus.PENDING) is None


class TestSmsGateways:
    @pytest.mark.asyncio
    async def test_log_channel(self):
        result = await NotificationService().send_sms(CUSTOMER_PHONE, "Olá")
        assert result.success is True
        assert result.channel == "log"
        assert result.sent_at is not None

    @pytest.mark.asyncio
    async def test_twilio(self):
        seen = []
        service = NotificationService(
            sms_provider="twilio", sms_api_key="AC123", sms_api_secret="token",
            sms_from_number="+15550001111", transport=gateway(201, seen),
        )

        result = await service.send_sms(CUSTOMER_PHONE, "Pedido confirmado")

        assert result.success is True
        assert result.channel == "sms"
        request = seen[0]
        assert request.url.path == "/2010-04-01/Accounts/AC123/Messages.json"
        assert request.headers["Authorization"].startswith("Basic ")
        form = parse_qs(request.content.decode())
        assert form == {"To": [CUSTOMER_PHONE], "From": ["+15550001111"], "Body": ["Pedido confirmado"]}

    @pytest.mark.asyncio
    async def test_twilio_error_status(self):
        service = NotificationService(
            sms_provider="twilio", sms_api_key="AC123", sms_api_secret="token", transport=gateway(400),
        )
        result = await service.send_sms(CUSTOMER_PHONE, "Oi")
        assert result.success is False
        assert result.error.startswith("Twilio error: 400")

    @pytest.mark.asyncio
    async def test_twilio_without_credentials(self):
        seen = []
        service = NotificationService(sms_provider="twilio", transport=gateway(201, seen))
        result = await service.send_sms(CUSTOMER_PHONE, "Oi")
        assert result.success is False
        assert result.error == "Twilio credentials not configured"
        assert seen == []

    @pytest.mark.asyncio
    async def test_infobip(self):
        seen = []
        service = NotificationService(
            sms_provider="infobip", sms_api_key="ib-key", sms_from_number="Cantina", transport=gateway(200, seen),
        )

        result = await service.send_sms(CUSTOMER_PHONE, "Seu pedido saiu")

        assert result.success is True
        assert seen[0].headers["Authorization"] == "App ib-key"
        body = json.loads(seen[0].content)
        message = body["messages"][0]
        assert message["destinations"] == [{"to": CUSTOMER_PHONE}]
        assert message["from"] == "Cantina"
        assert message["text"] == "Seu pedido saiu"

    @pytest.mark.asyncio
    async def test_infobip_error_status(self):
        service = NotificationService(sms_provider="infobip", sms_api_key="ib-key", transport=gateway(500))
        result = await service.send_sms(CUSTOMER_PHONE, "Oi")
        assert result.success is False
        assert result.error == "Infobip error: 500"

    @pytest.mark.asyncio
    async def test_transport_failure_is_a_result(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        service = NotificationService(
            sms_provider="infobip", sms_api_key="ib-key", transport=httpx.MockTransport(refuse),
        )
        result = await service.send_sms(CUSTOMER_PHONE, "Oi")
        assert result.success is False
        assert "connection refused" in result.error
