from typing import Optional

from fastapi import APIRouter, Depends, Query

from homeserve.auth import require_actor
from homeserve.models import (
    Actor,
    ActorRole,
    Booking,
    BookingCreateRequest,
    BookingStatus,
    BookingTransitionRequest,
)
from homeserve.routers.http_errors import raise_workflow_http_error
from homeserve.services.booking_workflow import booking_workflow
from homeserve.services.errors import WorkflowError
from homeserve.services.notification_store import notification_store

router = APIRouter(prefix="/bookings", tags=["bookings"])

_CUSTOMER_MESSAGES = {
    BookingStatus.CONFIRMED: ("Booking confirmed", "Your provider confirmed the booking for {date} {time}."),
    BookingStatus.REJECTED: ("Booking declined", "Your provider declined the booking for {date} {time}."),
    BookingStatus.COMPLETED: ("Booking completed", "Your booking on {date} has been marked completed."),
    BookingStatus.CANCELLED: ("Booking cancelled", "Your provider cancelled the booking for {date} {time}."),
}


def _notify_counterpart(actor: Actor, booking: Booking) -> None:
    if actor.role == ActorRole.CUSTOMER:
        if booking.status == BookingStatus.PENDING:
            title, body = "New booking request", f"{booking.date} {booking.time} at {booking.location}"
        else:
            title, body = "Booking cancelled", f"The customer cancelled the booking for {booking.date} {booking.time}."
        user_id = booking.provider_id
    else:
        title, template = _CUSTOMER_MESSAGES[booking.status]
        body = template.format(date=booking.date, time=booking.time)
        user_id = booking.customer_id
    notification_store.create(
        user_id=user_id,
        title=title,
        body=body,
        category="booking",
        deep_link=f"booking:{booking.id}",
    )


@router.post("", response_model=Booking)
def create_booking(request: BookingCreateRequest, actor: Actor = Depends(require_actor)):
    try:
        booking = booking_workflow.create(
            actor,
            service_id=request.service_id,
            date=request.date,
            time=request.time,
            location=request.location,
            notes=request.notes,
        )
    except WorkflowError as exc:
        raise_workflow_http_error(exc)
    _notify_counterpart(actor, booking)
    return booking


@router.get("/provider", response_model=list[Booking])
def list_provider_bookings(
    status: Optional[BookingStatus] = Query(default=None),
    actor: Actor = Depends(require_actor),
):
    try:
        return booking_workflow.list_for_provider(actor, actor.user_id, status=status)
    except WorkflowError as exc:
        raise_workflow_http_error(exc)


@router.get("/customer", response_model=list[Booking])
def list_customer_bookings(actor: Actor = Depends(require_actor)):
    try:
        return booking_workflow.list_for_customer(actor, actor.user_id)
    except WorkflowError as exc:
        raise_workflow_http_error(exc)


@router.get("/{booking_id}", response_model=Booking)
def get_booking(booking_id: str, actor: Actor = Depends(require_actor)):
    try:
        return booking_workflow.get_booking(actor, booking_id)
    except WorkflowError as exc:
        raise_workflow_http_error(exc)


def _transition(handler, booking_id: str, request: Optional[BookingTransitionRequest], actor: Actor) -> Booking:
    try:
        booking = handler(actor, booking_id, request.notes if request else "")
    except WorkflowError as exc:
        raise_workflow_http_error(exc)
    _notify_counterpart(actor, booking)
    return booking


@router.post("/{booking_id}/confirm", response_model=Booking)
def confirm_booking(
    booking_id: str,
    request: Optional[BookingTransitionRequest] = None,
    actor: Actor = Depends(require_actor),
):
    return _transition(booking_workflow.confirm, booking_id, request, actor)


@router.post("/{booking_id}/reject", response_model=Booking)
def reject_booking(
    booking_id: str,
    request: Optional[BookingTransitionRequest] = None,
    actor: Actor = Depends(require_actor),
):
    return _transition(booking_workflow.reject, booking_id, request, actor)


@router.post("/{booking_id}/complete", response_model=Booking)
def complete_booking(
    booking_id: str,
    request: Optional[BookingTransitionRequest] = None,
    actor: Actor = Depends(require_actor),
):
    return _transition(booking_workflow.complete, booking_id, request, actor)


@router.post("/{booking_id}/cancel", response_model=Booking)
def cancel_booking(
    booking_id: str,
    request: Optional[BookingTransitionRequest] = None,
    actor: Actor = Depends(require_actor),
):
    return _transition(booking_workflow.cancel, booking_id, request, actor)
