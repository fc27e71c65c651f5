"""
Event System Module

Publish/subscribe dispatcher for domain events. Formatting and delivery of
notifications (email, SMS, push) live outside the engine and subscribe here.
"""

from enum import Enum
from typing import Callable, Dict, List, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone
import uuid
import logging
from threading import RLock


class DomainEvent(Enum):
    """Domain events that can occur in the ledger"""

    # Transaction events
    TRANSACTION_CREATED = "transaction.created"
    TRANSACTION_APPROVED = "transaction.approved"
    TRANSACTION_REJECTED = "transaction.rejected"
    TRANSACTION_DELETED = "transaction.deleted"

    # Account events
    ACCOUNT_CREATED = "account.created"

    # Loan events
    LOAN_STATUS_CHANGED = "loan.status_changed"
    LOAN_GUARANTOR_REQUESTED = "loan.guarantor_requested"

    # Welfare / batch events
    WELFARE_CHARGED = "welfare.charged"
    OVERDUE_INTEREST_APPLIED = "loan.overdue_interest_applied"

    # Reminder events
    REMINDER_CREATED = "reminder.created"


@dataclass
class EventPayload:
    """Payload for domain events"""
    event_type: DomainEvent
    entity_type: str
    entity_id: str
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'data': self.data,
            'timestamp': self.timestamp.isoformat(),
            'event_id': self.event_id
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EventPayload':
        timestamp = data['timestamp']
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        return cls(
            event_type=DomainEvent(data['event_type']),
            entity_type=data['entity_type'],
            entity_id=data['entity_id'],
            data=data['data'],
            timestamp=timestamp,
            event_id=data['event_id']
        )


def _handler_name(handler: Callable) -> str:
    return getattr(handler, '__name__', repr(handler))


class EventDispatcher:
    """Central event dispatcher, publish/subscribe pattern"""

    def __init__(self):
        self._handlers: Dict[DomainEvent, List[Callable]] = {}
        self._global_handlers: List[Callable] = []
        self._lock = RLock()
        self.logger = logging.getLogger("sacco.events")

    def subscribe(self, event_type: DomainEvent, handler: Callable) -> None:
        """Subscribe to a specific event type"""
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)
            self.logger.debug(f"Subscribed handler {_handler_name(handler)} to {event_type.value}")

    def subscribe_all(self, handler: Callable) -> None:
        """Subscribe to ALL events"""
        with self._lock:
            self._global_handlers.append(handler)
            self.logger.debug(f"Subscribed global handler {_handler_name(handler)}")

    def unsubscribe(self, event_type: DomainEvent, handler: Callable) -> None:
        with self._lock:
            if event_type in self._handlers:
                try:
                    self._handlers[event_type].remove(handler)
                except ValueError:
                    self.logger.warning(
                        f"Handler {_handler_name(handler)} was not subscribed to {event_type.value}"
                    )

    def publish(self, event: EventPayload) -> None:
        """Publish event to all subscribers; a failing handler never breaks the caller"""
        with self._lock:
            handlers = list(self._handlers.get(event.event_type, [])) + list(self._global_handlers)

        self.logger.debug(f"Publishing event {event.event_type.value} for {event.entity_type}:{event.entity_id}")
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                self.logger.error(
                    f"Error in event handler {_handler_name(handler)} for {event.event_type.value}: {e}"
                )

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()
            self._global_handlers.clear()

    def get_handler_count(self, event_type: Optional[DomainEvent] = None) -> int:
        """Get count of handlers for a specific event type or all"""
        with self._lock:
            if event_type:
                return len(self._handlers.get(event_type, []))
            total = sum(len(handlers) for handlers in self._handlers.values())
            return total + len(self._global_handlers)


# Convenience functions for common event patterns
def create_transaction_event(event_type: DomainEvent, transaction) -> EventPayload:
    """Create a transaction-related event"""
    return EventPayload(
        event_type=event_type,
        entity_type="transaction",
        entity_id=transaction.id,
        data={
            "account_id": transaction.account_id,
            "transaction_type": transaction.transaction_type.value,
            "amount": str(transaction.amount.amount),
            "currency": transaction.amount.currency.code,
            "balance_after": str(transaction.balance_after.amount),
            "status": transaction.status.value,
            "loan_id": transaction.loan_id,
            "description": transaction.description
        }
    )


def create_loan_status_event(loan, account=None, previous_status=None) -> EventPayload:
    """
    Create a LOAN_STATUS_CHANGED event carrying what a notifier needs to
    address and word the message.
    """
    return EventPayload(
        event_type=DomainEvent.LOAN_STATUS_CHANGED,
        entity_type="loan",
        entity_id=loan.id,
        data={
            "account_id": loan.account_id,
            "status": loan.status.value,
            "previous_status": previous_status.value if previous_status else None,
            "amount": str(loan.amount.amount),
            "total_amount": str(loan.total_amount.amount),
            "outstanding_balance": str(loan.outstanding_balance.amount),
            "currency": loan.amount.currency.code,
            "member_name": account.holder_name if account else None,
            "member_email": account.holder_email if account else None
        }
    )


def create_reminder_event(reminder) -> EventPayload:
    """Create a REMINDER_CREATED event"""
    return EventPayload(
        event_type=DomainEvent.REMINDER_CREATED,
        entity_type="reminder",
        entity_id=reminder.id,
        data={
            "account_id": reminder.account_id,
            "reminder_type": reminder.reminder_type.value,
            "title": reminder.title,
            "message": reminder.message,
            "due_date": reminder.due_date.isoformat() if reminder.due_date else None
        }
    )
