"""
Notification dispatcher for order events.

Services publish ``OrderEvent`` values without awaiting delivery: events
go onto a bounded in-memory queue drained by a background worker that
hands them to a transport. The default transport forwards each event to
the external notification worker through Celery ``send_task``; rendering
and e-mail delivery happen there.

Delivery is best effort. A full queue drops the event with a warning and
transport failures are logged, never raised to the publisher.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional, Protocol, Union

from celery import Celery
from sqlalchemy import event as sa_event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session, SessionTransaction

from marketplace.core.config import get_settings
from marketplace.core.logging import get_logger

logger = get_logger(__name__)


class OrderEventType(str, Enum):
    ORDER_CREATED = "order_created"
    STATUS_CHANGED = "order_status_changed"
    SHIPPING_UPDATED = "shipping_updated"


class RecipientRole(str, Enum):
    SUPPLIER = "supplier"
    DROPSHIPPER = "dropshipper"
    CUSTOMER = "customer"


@dataclass(frozen=True)
class OrderEvent:
    """
    Notification-worthy change of an order.

    Attributes:
        event_type: What happened
        order_id: Order concerned
        recipient_role: Party to notify
        context: Template data (order number, status, tracking number, ...)
    """

    event_type: OrderEventType
    order_id: uuid.UUID
    recipient_role: RecipientRole
    context: dict[str, Any] = field(default_factory=dict)

    def to_message(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "order_id": str(self.order_id),
            "recipient_role": self.recipient_role.value,
            "context": {key: _json_safe(value) for key, value in self.context.items()},
        }


def _json_safe(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Enum):
        return value.value
    return str(value)


def order_events(
    event_type: OrderEventType,
    order: Any,
    recipients: Iterable[RecipientRole],
    **extra: Any,
) -> list[OrderEvent]:
    """Build one event per recipient with the common order context."""
    context = {
        "order_number": order.order_number,
        "status": order.status,
        "customer_name": order.customer_name,
        "customer_email": order.customer_email,
        "supplier_id": order.supplier_id,
        "dropshipper_id": order.dropshipper_id,
        "total": order.total,
        "currency": order.currency,
        **extra,
    }
    return [
        OrderEvent(
            event_type=event_type,
            order_id=order.id,
            recipient_role=role,
            context=dict(context),
        )
        for role in recipients
    ]


class NotificationTransport(Protocol):
    async def deliver(self, event: OrderEvent) -> None: ...


class CeleryNotificationTransport:
    """Forward events to the external worker by task name."""

    def __init__(self, app: Optional[Celery] = None, task_name: Optional[str] = None):
        settings = get_settings()
        self.app = app or Celery("marketplace", broker=settings.celery_broker_url)
        self.task_name = task_name or settings.notification_task_name

    async def deliver(self, event: OrderEvent) -> None:
        # send_task blocks on the broker connection
        await asyncio.to_thread(
            self.app.send_task,
            self.task_name,
            kwargs={"event": event.to_message()},
        )


class NotificationDispatcher:
    """
    Bounded queue plus a single background delivery worker.

    Example:
        >>> dispatcher = NotificationDispatcher(transport)
        >>> await dispatcher.start()
        >>> dispatcher.publish(event)
        >>> await dispatcher.stop()
    """

    def __init__(
        self,
        transport: Optional[NotificationTransport] = None,
        maxsize: Optional[int] = None,
    ):
        settings = get_settings()
        self.transport = transport or CeleryNotificationTransport()
        self.maxsize = maxsize or settings.notification_queue_size
        self.queue: asyncio.Queue[OrderEvent] = asyncio.Queue(maxsize=self.maxsize)
        self._worker: Optional[asyncio.Task] = None
        self.dropped = 0
        self.failed = 0

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def publish(self, event: OrderEvent) -> bool:
        """
        Enqueue an event without waiting for delivery.

        Returns:
            False when the queue is full and the event was dropped
        """
        try:
            self.queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "Notification queue full, dropping event",
                event_type=event.event_type.value,
                order_id=str(event.order_id),
                recipient_role=event.recipient_role.value,
                queue_size=self.queue.qsize(),
            )
            return False

    def publish_many(self, events: Iterable[OrderEvent]) -> int:
        return sum(1 for event in events if self.publish(event))

    def _renew_queue(self) -> None:
        # asyncio queues bind to the loop of their first waiter
        pending = []
        while not self.queue.empty():
            pending.append(self.queue.get_nowait())
        self.queue = asyncio.Queue(maxsize=self.maxsize)
        for event in pending:
            self.queue.put_nowait(event)

    async def start(self) -> None:
        """
        Start the delivery worker on the running event loop.

        A worker left behind by an earlier loop (a previous application
        lifespan) is discarded along with its queue; queued events are
        carried over.
        """
        loop = asyncio.get_running_loop()
        if self.running and self._worker.get_loop() is loop:
            return
        if self._worker is not None and self._worker.get_loop() is not loop:
            logger.warning("Discarding notification worker from a previous event loop")
        self._renew_queue()
        self._worker = loop.create_task(self._run(), name="notification-dispatcher")
        logger.info("Notification dispatcher started", maxsize=self.maxsize)

    async def stop(self, timeout: float = 5.0) -> None:
        """Drain pending events (bounded by ``timeout``) and stop the worker."""
        if self._worker is None:
            return
        worker, self._worker = self._worker, None
        try:
            if worker.get_loop() is asyncio.get_running_loop():
                try:
                    await asyncio.wait_for(self.queue.join(), timeout=timeout)
                except asyncio.TimeoutError:
                    logger.warning(
                        "Notification dispatcher stopped with undelivered events",
                        pending=self.queue.qsize(),
                    )
                worker.cancel()
                try:
                    await worker
                except asyncio.CancelledError:
                    pass
        finally:
            self._renew_queue()
        logger.info("Notification dispatcher stopped", dropped=self.dropped, failed=self.failed)

    async def _run(self) -> None:
        while True:
            event = await self.queue.get()
            try:
                await self.transport.deliver(event)
                logger.debug(
                    "Notification delivered",
                    event_type=event.event_type.value,
                    order_id=str(event.order_id),
                    recipient_role=event.recipient_role.value,
                )
            except Exception as e:
                self.failed += 1
                logger.error(
                    "Notification delivery failed",
                    event_type=event.event_type.value,
                    order_id=str(event.order_id),
                    recipient_role=event.recipient_role.value,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            finally:
                self.queue.task_done()


_dispatcher: Optional[NotificationDispatcher] = None


def get_dispatcher() -> NotificationDispatcher:
    """Process-wide dispatcher started by the application lifespan."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher()
    return _dispatcher


class EventPublisher(Protocol):
    def publish(self, event: OrderEvent) -> bool: ...

    def publish_many(self, events: Iterable[OrderEvent]) -> int: ...


class CommitBoundPublisher:
    """
    Holds events published during a database transaction and forwards
    them to the dispatcher only once that transaction commits.

    Events are discarded when the outermost transaction rolls back, so
    no notification names an order or status that was never stored.
    Savepoint rollbacks leave the held events in place.
    """

    def __init__(
        self,
        session: Union[AsyncSession, Session],
        dispatcher: Optional[EventPublisher] = None,
    ):
        self.dispatcher = dispatcher or get_dispatcher()
        self.pending: list[OrderEvent] = []
        sync_session = getattr(session, "sync_session", session)
        sa_event.listen(sync_session, "after_commit", self._on_commit)
        sa_event.listen(sync_session, "after_transaction_end", self._on_transaction_end)

    def publish(self, event: OrderEvent) -> bool:
        self.pending.append(event)
        return True

    def publish_many(self, events: Iterable[OrderEvent]) -> int:
        return sum(1 for event in events if self.publish(event))

    def _on_commit(self, session: Session) -> None:
        events, self.pending = self.pending, []
        if events:
            self.dispatcher.publish_many(events)

    def _on_transaction_end(self, session: Session, transaction: SessionTransaction) -> None:
        if transaction.parent is not None or not self.pending:
            return
        logger.info(
            "Discarding notifications of rolled back transaction",
            discarded=len(self.pending),
        )
        self.pending = []
