import logging
from datetime import date, datetime, time
from typing import Callable, List, Optional
from uuid import uuid4

from homeserve.models import (
    Actor,
    ActorRole,
    AuditEntry,
    Booking,
    BookingStatus,
)
from homeserve.services.aggregates import BookingRecord, utcnow
from homeserve.services.errors import (
    ServiceUnavailableError,
    WorkflowNotFoundError,
    WorkflowPermissionError,
    WorkflowValidationError,
)
from homeserve.services.permission_guard import BOOKING_ENTITY, ensure_can_transition, ensure_can_view
from homeserve.services.state_machine import StateMachine, TransitionRule
from homeserve.services.workflow_store import WorkflowStore, workflow_store

logger = logging.getLogger(__name__)

_PROVIDER = frozenset({ActorRole.PROVIDER})
_PARTIES = frozenset({ActorRole.PROVIDER, ActorRole.CUSTOMER})

BOOKING_MACHINE = StateMachine(
    BOOKING_ENTITY,
    [
        TransitionRule("confirm", BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value, _PROVIDER),
        TransitionRule(
            "reject",
            BookingStatus.PENDING.value,
            BookingStatus.REJECTED.value,
            _PROVIDER,
            required_fields=("notes",),
        ),
        TransitionRule("complete", BookingStatus.CONFIRMED.value, BookingStatus.COMPLETED.value, _PROVIDER),
        TransitionRule("cancel", BookingStatus.PENDING.value, BookingStatus.CANCELLED.value, _PARTIES),
        TransitionRule("cancel", BookingStatus.CONFIRMED.value, BookingStatus.CANCELLED.value, _PARTIES),
    ],
)

# A disabled provider may wind down existing bookings but not take on new work.
INACTIVE_PROVIDER_BLOCKED = frozenset({"confirm"})

BOOKING_REQUESTED_NOTE = "Booking requested"


def _clean(notes: Optional[str]) -> Optional[str]:
    if notes is None or not notes.strip():
        return None
    return notes.strip()


class BookingWorkflow:
    def __init__(self, store: WorkflowStore, clock: Callable[[], datetime] = utcnow) -> None:
        self._store = store
        self._clock = clock

    def create(
        self,
        actor: Actor,
        *,
        service_id: str,
        date: str,
        time: str,
        location: str,
        notes: str = "",
    ) -> Booking:
        booking_date = self._parse_date(date)
        booking_time = self._parse_time(time)
        if not location.strip():
            raise WorkflowValidationError("Location is required")

        service = self._store.get_service(service_id)
        if service is None:
            raise WorkflowNotFoundError("Service not found")
        if not service.is_available:
            raise ServiceUnavailableError("Service is not currently available")
        provider = self._store.load_provider(service.provider_id)
        if not provider.is_active:
            raise ServiceUnavailableError("Service provider is not currently accepting bookings")

        now = self._clock()
        booking = BookingRecord(
            id=f"bk_{uuid4().hex[:10]}",
            service_id=service.id,
            customer_id=actor.user_id,
            provider_id=service.provider_id,
            date=booking_date.isoformat(),
            time=booking_time.strftime("%H:%M"),
            location=location.strip(),
            notes=notes.strip(),
            status=BookingStatus.PENDING,
            created_at=now,
        )
        ensure_can_transition(actor, booking, "create")
        booking.history.append(AuditEntry(status=BookingStatus.PENDING.value, date=now, notes=BOOKING_REQUESTED_NOTE))
        self._store.insert_booking(booking)
        logger.info("Booking %s requested by %s for service %s", booking.id, actor.user_id, service.id)
        return booking.to_view()

    def confirm(self, actor: Actor, booking_id: str, notes: str = "") -> Booking:
        return self._transition(actor, booking_id, "confirm", notes)

    def reject(self, actor: Actor, booking_id: str, notes: str = "") -> Booking:
        return self._transition(actor, booking_id, "reject", notes)

    def complete(self, actor: Actor, booking_id: str, notes: str = "") -> Booking:
        return self._transition(actor, booking_id, "complete", notes)

    def cancel(self, actor: Actor, booking_id: str, notes: str = "") -> Booking:
        return self._transition(actor, booking_id, "cancel", notes)

    def get_booking(self, actor: Actor, booking_id: str) -> Booking:
        booking = self._store.load_booking(booking_id)
        ensure_can_view(actor, booking)
        return booking.to_view()

    def list_for_provider(
        self,
        actor: Actor,
        provider_id: str,
        status: Optional[BookingStatus] = None,
    ) -> List[Booking]:
        if actor.role != ActorRole.PROVIDER or actor.user_id != provider_id:
            raise WorkflowPermissionError("Providers can only list their own bookings")
        return [item.to_view() for item in self._store.list_bookings(provider_id=provider_id, status=status)]

    def list_for_customer(self, actor: Actor, customer_id: str) -> List[Booking]:
        if actor.role != ActorRole.CUSTOMER or actor.user_id != customer_id:
            raise WorkflowPermissionError("Customers can only list their own bookings")
        return [item.to_view() for item in self._store.list_bookings(customer_id=customer_id)]

    def _transition(self, actor: Actor, booking_id: str, transition: str, notes: str) -> Booking:
        with self._store.entity_lock(BOOKING_ENTITY, booking_id):
            booking = self._store.load_booking(booking_id)
            rule = BOOKING_MACHINE.resolve(
                actor=actor,
                entity=booking,
                transition=transition,
                fields={"notes": notes},
            )
            if transition in INACTIVE_PROVIDER_BLOCKED:
                provider = self._store.load_provider(booking.provider_id)
                if not provider.is_active:
                    raise ServiceUnavailableError("Your account has been disabled by an administrator")

            previous = booking.status
            next_status = BookingStatus(rule.to_state)
            booking.history.append(
                AuditEntry(status=next_status.value, date=self._clock(), notes=_clean(notes), reviewer=actor.user_id)
            )
            booking.status = next_status
            self._store.save_booking(booking)
        logger.info("Booking %s %s -> %s by %s", booking_id, previous.value, next_status.value, actor.user_id)
        return booking.to_view()

    def _parse_date(self, value: str) -> date:
        try:
            return date.fromisoformat(value.strip())
        except ValueError as exc:
            raise WorkflowValidationError("Invalid date; expected YYYY-MM-DD") from exc

    def _parse_time(self, value: str) -> time:
        try:
            return time.fromisoformat(value.strip())
        except ValueError as exc:
            raise WorkflowValidationError("Invalid time; expected HH:MM") from exc


booking_workflow = BookingWorkflow(store=workflow_store)
