"""Notification service: order lifecycle text messages over SMS."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

import httpx

from restodesk.core.config import settings
from restodesk.models.order import Order, OrderStatus

logger = logging.getLogger(__name__)


@dataclass
class NotificationResult:
    """Result of a notification attempt."""
    success: bool
    channel: str  # "sms", "log"
    recipient: Optional[str]
    message: str
    kind: str = "general"
    error: Optional[str] = None
    sent_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class NotificationKind(str, Enum):
    NEW_ORDER = "new_order"
    ORDER_CONFIRMED = "order_confirmed"
    ORDER_PREPARING = "order_preparing"
    ORDER_READY = "order_ready"
    DRIVER_DISPATCHED = "driver_dispatched"
    DRIVER_DISPATCH_FAILED = "driver_dispatch_failed"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERY_COMPLETED = "delivery_completed"
    THANK_YOU = "thank_you"
    DELIVERY_FAILED = "delivery_failed"
    DELIVERY_FAILED_ALERT = "delivery_failed_alert"
    ORDER_CANCELLED = "order_cancelled"
    PAYMENT_CONFIRMED = "payment_confirmed"


# Sent to the restaurant's phone; everything else goes to the customer
RESTAURANT_KINDS = frozenset({
    NotificationKind.NEW_ORDER,
    NotificationKind.DRIVER_DISPATCH_FAILED,
    NotificationKind.DELIVERY_FAILED_ALERT,
})

PRIORITY = {
    NotificationKind.NEW_ORDER: "high",
    NotificationKind.DRIVER_DISPATCH_FAILED: "high",
    NotificationKind.DELIVERY_FAILED: "high",
    NotificationKind.DELIVERY_FAILED_ALERT: "high",
    NotificationKind.DELIVERY_COMPLETED: "low",
    NotificationKind.THANK_YOU: "low",
}

STATUS_NOTIFICATIONS = {
    OrderStatus.CONFIRMED: NotificationKind.ORDER_CONFIRMED,
    OrderStatus.PREPARING: NotificationKind.ORDER_PREPARING,
    OrderStatus.READY: NotificationKind.ORDER_READY,
    OrderStatus.DRIVER_DISPATCHED: NotificationKind.DRIVER_DISPATCHED,
    OrderStatus.DRIVER_DISPATCH_FAILED: NotificationKind.DRIVER_DISPATCH_FAILED,
    OrderStatus.OUT_FOR_DELIVERY: NotificationKind.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED: NotificationKind.DELIVERY_COMPLETED,
    OrderStatus.DELIVERY_FAILED: NotificationKind.DELIVERY_FAILED,
    OrderStatus.CANCELLED: NotificationKind.ORDER_CANCELLED,
}


def money(value) -> str:
    return f"{settings.currency_symbol} {float(value or 0):.2f}"


class MessageTemplates:
    """Message bodies per notification kind."""

    def __init__(self, restaurant_name: str, support_phone: str = ""):
        self.restaurant_name = restaurant_name
        self.support_phone = support_phone

    def render(self, order: Order, kind: NotificationKind, **extra: Any) -> str:
        body = getattr(self, f"_{kind.value}")(order, **extra)
        return f"{body}\n\n{self.restaurant_name}"

    def _new_order(self, order: Order, **extra) -> str:
        lines = [
            "NOVO PEDIDO RECEBIDO!",
            f"Pedido: {order.order_number}",
            f"Cliente: {order.customer_name}",
            f"Telefone: {order.customer_phone or '-'}",
            f"Total: {money(order.total)}",
        ]
        if order.delivery_address:
            address = order.delivery_address
            lines.append(
                f"Entrega: {address.get('address') or address.get('street', '')}, "
                f"{address.get('number', '')} - {address.get('neighborhood', '')}"
            )
        else:
            lines.append(f"Tipo: {order.type.value}")
        lines.append(f"Pagamento: {order.payment_method or '-'}")
        lines.append("Itens:")
        lines.extend(
            f"- {item.name} (x{item.quantity}) - {money(item.line_total)}" for item in order.items
        )
        lines.append("Por favor, confirmar o pedido e iniciar o preparo!")
        return "\n".join(lines)

    def _order_confirmed(self, order: Order, **extra) -> str:
        return (
            f"Seu pedido foi confirmado!\nPedido: {order.order_number}\n"
            f"Total: {money(order.total)}\nTempo estimado de preparo: 20-30 minutos"
        )

    def _order_preparing(self, order: Order, **extra) -> str:
        return f"Seu pedido está sendo preparado!\nPedido: {order.order_number}\nPrevisão: mais 15-20 minutos"

    def _order_ready(self, order: Order, **extra) -> str:
        if order.is_delivery:
            return f"Seu pedido está pronto!\nPedido: {order.order_number}\nAguardando o motorista."
        return f"Seu pedido está pronto para retirada!\nPedido: {order.order_number}"

    def _driver_dispatched(self, order: Order, driver: Optional[Dict[str, Any]] = None,
                           tracking_url: Optional[str] = None, **extra) -> str:
        lines = [
            "Seu pedido está a caminho!",
            f"Pedido: {order.order_number}",
            "Tempo estimado: 30-45 minutos",
        ]
        driver = driver or order.driver_info
        if driver:
            lines.append(f"Motorista: {driver.get('name', '')}")
            if driver.get("phone"):
                lines.append(f"Contato: {driver['phone']}")
            vehicle = " - ".join(p for p in (driver.get("vehicle"), driver.get("plate")) if p)
            if vehicle:
                lines.append(f"Veículo: {vehicle}")
        tracking_url = tracking_url or order.tracking_url
        if tracking_url:
            lines.append(f"Acompanhe sua entrega: {tracking_url}")
        return "\n".join(lines)

    def _driver_dispatch_failed(self, order: Order, error: Optional[str] = None, **extra) -> str:
        return (
            f"ALERTA: falha ao chamar motorista!\nPedido: {order.order_number}\n"
            f"Cliente: {order.customer_name} ({order.customer_phone or '-'})\n"
            f"Erro: {error or 'não informado'}\nDespache a entrega manualmente."
        )

    def _out_for_delivery(self, order: Order, **extra) -> str:
        lines = [
            "Seu pedido saiu para entrega!",
            f"Pedido: {order.order_number}",
            "Tempo estimado: 15-25 minutos",
        ]
        if order.tracking_url:
            lines.append(f"Acompanhe sua entrega: {order.tracking_url}")
        return "\n".join(lines)

    def _delivery_completed(self, order: Order, **extra) -> str:
        return (
            f"Seu pedido foi entregue!\nPedido: {order.order_number}\n"
            f"Total: {money(order.total)}\nEsperamos que tenha gostado!"
        )

    def _thank_you(self, order: Order, **extra) -> str:
        delivered = order.delivered_at or datetime.now(timezone.utc)
        return (
            f"Obrigado por comprar na {self.restaurant_name}!\nPedido: {order.order_number}\n"
            f"Entregue em: {delivered.strftime('%d/%m/%Y %H:%M')}\nVolte sempre!"
        )

    def _delivery_failed(self, order: Order, reason: Optional[str] = None, **extra) -> str:
        text = (
            f"Houve um problema com sua entrega.\nPedido: {order.order_number}\n"
            f"Motivo: {reason or order.cancellation_reason or 'não informado'}\n"
            "Entre em contato conosco para resolvermos o problema!"
        )
        if self.support_phone:
            text += f"\nSAC: {self.support_phone}"
        return text

    def _delivery_failed_alert(self, order: Order, reason: Optional[str] = None, **extra) -> str:
        return (
            f"ALERTA: entrega cancelada pelo motorista!\nPedido: {order.order_number}\n"
            f"Motivo: {reason or 'não informado'}\n"
            "Contate o cliente e remarque a entrega."
        )

    def _order_cancelled(self, order: Order, **extra) -> str:
        return (
            f"Seu pedido foi cancelado.\nPedido: {order.order_number}\n"
            f"Motivo: {order.cancellation_reason or 'não informado'}"
        )

    def _payment_confirmed(self, order: Order, **extra) -> str:
        return (
            f"Pagamento confirmado!\nPedido: {order.order_number}\n"
            f"Pagamento: {order.payment_method or '-'}\nValor: {money(order.total)}"
        )


class NotificationService:
    """Sends order notifications by SMS. Never raises: failures come back as results."""

    def __init__(
        self,
        sms_provider: str = "log",  # "twilio", "infobip", "log"
        sms_api_key: Optional[str] = None,
        sms_api_secret: Optional[str] = None,
        sms_from_number: Optional[str] = None,
        restaurant_phone: Optional[str] = None,
        templates: Optional[MessageTemplates] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.sms_provider = sms_provider
        self.sms_api_key = sms_api_key
        self.sms_api_secret = sms_api_secret
        self.sms_from_number = sms_from_number
        self.restaurant_phone = restaurant_phone
        self.templates = templates or MessageTemplates(settings.restaurant_name, settings.support_phone)
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=settings.delivery_provider_timeout_seconds, transport=self._transport
        )

    async def send_sms(self, to: str, message: str) -> NotificationResult:
        try:
            if self.sms_provider == "twilio":
                return await self._send_twilio_sms(to, message)
            if self.sms_provider == "infobip":
                return await self._send_infobip_sms(to, message)
            return await self._send_log_sms(to, message)
        except Exception as e:
            logger.error(f"SMS send error to {to}: {e}")
            return NotificationResult(
                success=False, channel="sms", recipient=to, message=message, error=str(e),
            )

    async def _send_twilio_sms(self, to: str, message: str) -> NotificationResult:
        """Send SMS via Twilio."""
        if not self.sms_api_key or not self.sms_api_secret:
            return NotificationResult(
                success=False, channel="sms", recipient=to, message=message,
                error="Twilio credentials not configured",
            )

        async with self._client() as client:
            response = await client.post(
                f"https://api.twilio.com/2010-04-01/Accounts/{self.sms_api_key}/Messages.json",
                auth=(self.sms_api_key, self.sms_api_secret),
                data={"To": to, "From": self.sms_from_number, "Body": message},
            )

        if response.status_code in (200, 201):
            return NotificationResult(
                success=True, channel="sms", recipient=to, message=message,
                sent_at=datetime.now(timezone.utc),
            )
        return NotificationResult(
            success=False, channel="sms", recipient=to, message=message,
            error=f"Twilio error: {response.status_code} - {response.text}",
        )

    async def _send_infobip_sms(self, to: str, message: str) -> NotificationResult:
        """Send SMS via Infobip."""
        if not self.sms_api_key:
            return NotificationResult(
                success=False, channel="sms", recipient=to, message=message,
                error="Infobip API key not configured",
            )

        async with self._client() as client:
            response = await client.post(
                "https://api.infobip.com/sms/2/text/advanced",
                headers={"Authorization": f"App {self.sms_api_key}"},
                json={
                    "messages": [{
                        "destinations": [{"to": to}],
                        "from": self.sms_from_number or settings.restaurant_name,
                        "text": message,
                    }]
                },
            )

        if response.status_code == 200:
            return NotificationResult(
                success=True, channel="sms", recipient=to, message=message,
                sent_at=datetime.now(timezone.utc),
            )
        return NotificationResult(
            success=False, channel="sms", recipient=to, message=message,
            error=f"Infobip error: {response.status_code}",
        )

    async def _send_log_sms(self, to: str, message: str) -> NotificationResult:
        """Development provider: the message is only logged."""
        logger.info(f"[LOG SMS] To: {to}\n{message}")
        return NotificationResult(
            success=True, channel="log", recipient=to, message=message,
            sent_at=datetime.now(timezone.utc),
        )

    async def send_notification(
        self,
        recipient: Optional[str],
        message: str,
        priority: str = "medium",
        kind: str = "general",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> NotificationResult:
        if not recipient:
            logger.warning(f"Notification '{kind}' skipped: no recipient phone")
            return NotificationResult(
                success=False, channel="sms", recipient=None, message=message,
                kind=kind, error="No recipient phone number", metadata=metadata or {},
            )
        result = await self.send_sms(recipient, message)
        result.kind = kind
        result.metadata = {"priority": priority, **(metadata or {})}
        if not result.success:
            logger.warning(f"Notification '{kind}' to {recipient} failed: {result.error}")
        return result

    def recipient_for(self, order: Order, kind: NotificationKind) -> Optional[str]:
        if kind in RESTAURANT_KINDS:
            restaurant = order.restaurant
            return (restaurant.phone if restaurant else None) or self.restaurant_phone
        return order.customer_phone

    async def send_order_notification(
        self, order: Order, kind: NotificationKind, **extra: Any
    ) -> NotificationResult:
        kind = NotificationKind(kind)
        try:
            message = self.templates.render(order, kind, **extra)
            recipient = self.recipient_for(order, kind)
        except Exception as e:
            logger.error(f"Could not build '{kind.value}' notification for order {order.id}: {e}")
            return NotificationResult(
                success=False, channel="sms", recipient=None, message="",
                kind=kind.value, error=str(e),
            )
        return await self.send_notification(
            recipient,
            message,
            priority=PRIORITY.get(kind, "medium"),
            kind=kind.value,
            metadata={"order_id": order.id, "order_number": order.order_number},
        )

    async def send_status_notification(self, order: Order, status: OrderStatus) -> Optional[NotificationResult]:
        """Notification matching a new order status; None when the status has none."""
        kind = STATUS_NOTIFICATIONS.get(status)
        if kind is None:
            return None
        return await self.send_order_notification(order, kind)


# Global notification service instance
_notification_service: Optional[NotificationService] = None


def get_notification_service() -> NotificationService:
    """Get or create the notification service instance."""
    global _notification_service
    if _notification_service is None:
        _notification_service = NotificationService(
            sms_provider=settings.sms_provider,
            sms_api_key=settings.sms_api_key or None,
            sms_api_secret=settings.sms_api_secret or None,
            sms_from_number=settings.sms_from_number or None,
            restaurant_phone=settings.restaurant_phone or None,
        )
    return _notification_service
