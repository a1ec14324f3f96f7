"""
Event bus: persists business events and dispatches them to in-process subscribers.

Handlers are called sequentially with (db, event) because they share the publisher's
database session. Nested publishing (handlers that publish events) is bounded by
``event_max_dispatch_depth``.
"""
import inspect
import re
import time
from contextvars import ContextVar
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bizflow.core.config import Settings, get_settings
from bizflow.core.logging_config import LoggingConfig
from bizflow.core.metrics import events_dispatched_total, events_published_total
from bizflow.models.event import Event, EventStatus, EventTypes
from bizflow.utils.datetime_utils import to_jsonable, utc_now

logger = LoggingConfig.get_logger(__name__)

EventHandler = Callable[[Session, Event], Union[Awaitable[None], None]]

_dispatch_depth: ContextVar[int] = ContextVar("event_dispatch_depth", default=0)


def matches_pattern(event_type: str, pattern: str) -> bool:
    """
    Check if an event type matches a subscription pattern.
    Supports wildcards: user.* matches user.created, user.updated, etc.
    """
    if pattern == "*" or pattern == event_type:
        return True
    if "*" not in pattern:
        return False
    regex = "^" + ".*".join(re.escape(part) for part in pattern.split("*")) + "$"
    return re.match(regex, event_type) is not None


class EventBus:
    """Publish/subscribe event bus backed by the events table"""

    ENTITY_EVENTS: Dict[str, Dict[str, str]] = {
        "user": {
            "created": EventTypes.USER_CREATED,
            "updated": EventTypes.USER_UPDATED,
            "deleted": EventTypes.USER_DELETED,
            "login": EventTypes.USER_LOGIN,
            "logout": EventTypes.USER_LOGOUT,
        },
        "project": {
            "created": EventTypes.PROJECT_CREATED,
            "updated": EventTypes.PROJECT_UPDATED,
            "deleted": EventTypes.PROJECT_DELETED,
            "completed": EventTypes.PROJECT_COMPLETED,
            "archived": EventTypes.PROJECT_ARCHIVED,
        },
        "client": {
            "created": EventTypes.CLIENT_CREATED,
            "updated": EventTypes.CLIENT_UPDATED,
            "onboarded": EventTypes.CLIENT_ONBOARDED,
        },
        "invoice": {
            "created": EventTypes.INVOICE_CREATED,
            "sent": EventTypes.INVOICE_SENT,
            "paid": EventTypes.INVOICE_PAID,
            "overdue": EventTypes.INVOICE_OVERDUE,
        },
        "contract": {
            "created": EventTypes.CONTRACT_CREATED,
            "sent": EventTypes.CONTRACT_SENT,
            "signed": EventTypes.CONTRACT_SIGNED,
            "expired": EventTypes.CONTRACT_EXPIRED,
        },
    }

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._handlers: Dict[str, List[EventHandler]] = {}

    # ============================================
    # Subscriptions
    # ============================================

    def subscribe(self, pattern: str, handler: EventHandler) -> Callable[[], None]:
        """Subscribe a handler to events matching a pattern; returns an unsubscribe callable"""
        self._handlers.setdefault(pattern, []).append(handler)
        logger.debug(f"Subscribed to pattern: {pattern}")
        return lambda: self.unsubscribe(pattern, handler)

    def unsubscribe(self, pattern: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(pattern)
        if not handlers:
            return
        if handler in handlers:
            handlers.remove(handler)
        if not handlers:
            del self._handlers[pattern]

    def get_matching_handlers(self, event_type: str) -> List[EventHandler]:
        matching: List[EventHandler] = []
        for pattern, handlers in self._handlers.items():
            if matches_pattern(event_type, pattern):
                matching.extend(handlers)
        return matching

    @property
    def patterns(self) -> List[str]:
        return list(self._handlers.keys())

    # ============================================
    # Publishing
    # ============================================

    async def publish(
        self,
        db: Session,
        event_type: str,
        event_source: str,
        event_data: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        tenant_id: Optional[str] = None,
    ) -> Event:
        """Persist an event and dispatch it to matching handlers"""
        event = Event(
            event_type=event_type,
            event_source=event_source,
            event_data=to_jsonable(event_data or {}),
            event_metadata=to_jsonable(metadata or {}),
            tenant_id=tenant_id,
            status=EventStatus.PENDING.value,
        )
        db.add(event)
        db.commit()
        db.refresh(event)
        events_published_total.labels(event_type=event_type).inc()

        logger.info(
            f"Published event: {event_type}",
            extra={"event_id": str(event.id), "event_source": event_source},
        )

        depth = _dispatch_depth.get()
        if depth >= self.settings.event_max_dispatch_depth:
            logger.warning(
                f"Event {event_type} not dispatched: dispatch depth limit "
                f"({self.settings.event_max_dispatch_depth}) reached",
                extra={"event_id": str(event.id)},
            )
            event.status = EventStatus.COMPLETED.value
            event.error_message = "Dispatch skipped: maximum dispatch depth reached"
            event.processed_at = utc_now()
            db.commit()
            events_dispatched_total.labels(status="skipped").inc()
            return event

        await self.process_event(db, event)
        return event

    async def process_event(self, db: Session, event: Event) -> Event:
        """Run matching handlers for a persisted event and record the outcome"""
        start_time = time.time()
        event.status = EventStatus.PROCESSING.value
        db.commit()

        handlers = self.get_matching_handlers(event.event_type)
        errors: List[str] = []

        token = _dispatch_depth.set(_dispatch_depth.get() + 1)
        try:
            for handler in handlers:
                try:
                    result = handler(db, event)
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    if isinstance(e, SQLAlchemyError):
                        db.rollback()
                    logger.error(
                        f"Event handler failed for {event.event_type}: {e}",
                        exc_info=True,
                        extra={"event_id": str(event.id)},
                    )
                    errors.append(str(e) or type(e).__name__)
        finally:
            _dispatch_depth.reset(token)

        if errors:
            event.status = EventStatus.FAILED.value
            event.error_message = "; ".join(errors)
        else:
            event.status = EventStatus.COMPLETED.value
            event.error_message = None
        event.processed_at = utc_now()
        db.commit()

        events_dispatched_total.labels(status=event.status).inc()
        duration_ms = int((time.time() - start_time) * 1000)
        logger.debug(
            f"Processed event {event.event_type} in {duration_ms}ms ({len(handlers)} handlers)",
            extra={"event_id": str(event.id)},
        )
        return event

    # ============================================
    # History and replay
    # ============================================

    def get_event_history(
        self,
        db: Session,
        event_type: Optional[str] = None,
        event_source: Optional[str] = None,
        status: Optional[str] = None,
        limit: Optional[int] = None,
        tenant_id: Optional[str] = None,
    ) -> List[Event]:
        """Get events, newest first"""
        query = db.query(Event)
        if event_type:
            query = query.filter(Event.event_type == event_type)
        if event_source:
            query = query.filter(Event.event_source == event_source)
        if status:
            query = query.filter(Event.status == status)
        if tenant_id:
            query = query.filter(Event.tenant_id == tenant_id)
        query = query.order_by(Event.created_at.desc())
        if limit:
            query = query.limit(limit)
        return query.all()

    async def replay_failed_events(self, db: Session) -> int:
        """Re-dispatch failed events, oldest first. Returns the number replayed."""
        failed_events = (
            db.query(Event)
            .filter(Event.status == EventStatus.FAILED.value)
            .order_by(Event.created_at.asc())
            .all()
        )
        if not failed_events:
            logger.info("No failed events to replay")
            return 0

        logger.info(f"Replaying {len(failed_events)} failed events")
        for event in failed_events:
            event.retry_count = (event.retry_count or 0) + 1
            await self.process_event(db, event)
        return len(failed_events)

    def get_statistics(self, db: Session) -> Dict[str, int]:
        """Event counts by status"""
        rows = db.query(Event.status, func.count(Event.id)).group_by(Event.status).all()
        stats = {status.value: 0 for status in EventStatus}
        for status, count in rows:
            stats[status] = count
        stats["total"] = sum(count for _, count in rows)
        return stats

    # ============================================
    # Helper publishers
    # ============================================

    async def _publish_entity_event(
        self,
        db: Session,
        entity: str,
        action: str,
        entity_id: str,
        data: Optional[Dict[str, Any]] = None,
        tenant_id: Optional[str] = None,
    ) -> Event:
        event_type = self.ENTITY_EVENTS[entity].get(action)
        if event_type is None:
            raise ValueError(f"Unknown {entity} action: {action}")
        payload = {f"{entity}Id": entity_id}
        payload.update(data or {})
        return await self.publish(db, event_type, f"{entity}_service", payload, tenant_id=tenant_id)

    async def publish_user_event(self, db: Session, action: str, user_id: str,
                                 data: Optional[Dict[str, Any]] = None, tenant_id: Optional[str] = None) -> Event:
        return await self._publish_entity_event(db, "user", action, user_id, data, tenant_id)

    async def publish_project_event(self, db: Session, action: str, project_id: str,
                                    data: Optional[Dict[str, Any]] = None, tenant_id: Optional[str] = None) -> Event:
        return await self._publish_entity_event(db, "project", action, project_id, data, tenant_id)

    async def publish_client_event(self, db: Session, action: str, client_id: str,
                                   data: Optional[Dict[str, Any]] = None, tenant_id: Optional[str] = None) -> Event:
        return await self._publish_entity_event(db, "client", action, client_id, data, tenant_id)

    async def publish_invoice_event(self, db: Session, action: str, invoice_id: str,
                                    data: Optional[Dict[str, Any]] = None, tenant_id: Optional[str] = None) -> Event:
        return await self._publish_entity_event(db, "invoice", action, invoice_id, data, tenant_id)

    async def publish_contract_event(self, db: Session, action: str, contract_id: str,
                                     data: Optional[Dict[str, Any]] = None, tenant_id: Optional[str] = None) -> Event:
        return await self._publish_entity_event(db, "contract", action, contract_id, data, tenant_id)


# Global event bus instance
_event_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """Get global event bus instance"""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus


def reset_event_bus() -> None:
    """Drop the global event bus (tests)"""
    global _event_bus
    _event_bus = None
