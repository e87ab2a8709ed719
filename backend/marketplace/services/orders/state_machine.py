"""Order state machine with append-only status history.

Any recognized status may follow any other. Leaving a terminal status
(delivered, cancelled, refunded) is allowed but logged as a regression so
that manual corrections stay visible. Repeating the current status with
the same note as the latest history entry is an idempotent no-op.
"""

import uuid
from dataclasses import dataclass
from typing import Optional, Union

from marketplace.core.errors import InvalidInputError
from marketplace.core.logging import get_logger
from marketplace.database.base import utc_now
from marketplace.database.models.order import Order, OrderStatus, OrderStatusHistory

logger = get_logger(__name__)

INITIAL_NOTE = "Order created"


def default_note(status: OrderStatus) -> str:
    return f"Status updated to {status.value}"


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a transition request.

    Attributes:
        previous_status: Status before the request
        entry: History entry appended, None for an idempotent repeat
        status_changed: True when the status value actually changed
    """

    previous_status: OrderStatus
    entry: Optional[OrderStatusHistory]
    status_changed: bool

    @property
    def applied(self) -> bool:
        return self.entry is not None


class OrderStateMachine:
    """Applies status transitions to an order and records its history."""

    @staticmethod
    def parse_status(value: Union[str, OrderStatus]) -> OrderStatus:
        """Convert user input to an OrderStatus.

        Raises:
            InvalidInputError: If the value is not a known status
        """
        if isinstance(value, OrderStatus):
            return value
        try:
            return OrderStatus.from_string(value)
        except ValueError as e:
            raise InvalidInputError(
                "Invalid order status",
                status=str(value),
                allowed=[s.value for s in OrderStatus],
            ) from e

    @staticmethod
    def _append(
        order: Order,
        status: OrderStatus,
        note: Optional[str],
        changed_by: Optional[uuid.UUID],
    ) -> OrderStatusHistory:
        entry = OrderStatusHistory(
            id=uuid.uuid4(),
            order_id=order.id,
            position=len(order.status_history),
            status=status,
            note=note,
            changed_by=changed_by,
            created_at=utc_now(),
        )
        order.status_history.append(entry)
        order.status = status
        return entry

    def initialize(
        self,
        order: Order,
        changed_by: Optional[uuid.UUID] = None,
        note: str = INITIAL_NOTE,
    ) -> OrderStatusHistory:
        """Record the initial pending entry of a new order."""
        return self._append(order, OrderStatus.PENDING, note, changed_by)

    def transition(
        self,
        order: Order,
        new_status: OrderStatus,
        note: Optional[str] = None,
        changed_by: Optional[uuid.UUID] = None,
    ) -> TransitionResult:
        """Move the order to ``new_status`` and append a history entry.

        Args:
            order: Order, already locked by the caller
            new_status: Target status
            note: History note, defaults to "Status updated to <status>"
            changed_by: Acting user

        Returns:
            TransitionResult describing what happened
        """
        previous = order.status
        note = note or default_note(new_status)

        latest = order.latest_history
        if previous == new_status and latest is not None and latest.note == note:
            logger.debug(
                "Repeated status transition ignored",
                order_id=str(order.id),
                status=new_status.value,
            )
            return TransitionResult(previous_status=previous, entry=None, status_changed=False)

        if previous.is_terminal and new_status != previous:
            logger.warning(
                "Order leaving terminal status",
                order_id=str(order.id),
                transition=f"{previous.value}->{new_status.value}",
                changed_by=str(changed_by) if changed_by else None,
            )

        entry = self._append(order, new_status, note, changed_by)

        logger.info(
            "Order status transitioned",
            order_id=str(order.id),
            transition=f"{previous.value}->{new_status.value}",
        )
        return TransitionResult(
            previous_status=previous,
            entry=entry,
            status_changed=previous != new_status,
        )
