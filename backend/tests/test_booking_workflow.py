import os
import sys
import threading
from datetime import datetime, timedelta, timezone

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from homeserve.models import Actor, ActorRole, AuditEntry, BookingStatus, VerificationStatus
from homeserve.services.aggregates import ProviderAccount
from homeserve.services.booking_workflow import BOOKING_MACHINE, BookingWorkflow
from homeserve.services.errors import (
    ServiceUnavailableError,
    WorkflowInvalidStateError,
    WorkflowNotFoundError,
    WorkflowPermissionError,
    WorkflowValidationError,
)
from homeserve.services.service_catalog import ServiceCatalog
from homeserve.services.workflow_store import WorkflowStore

PROVIDER = Actor(user_id="prov_1", role=ActorRole.PROVIDER)
OTHER_PROVIDER = Actor(user_id="prov_2", role=ActorRole.PROVIDER)
CUSTOMER = Actor(user_id="cust_1", role=ActorRole.CUSTOMER)
OTHER_CUSTOMER = Actor(user_id="cust_2", role=ActorRole.CUSTOMER)
T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


class StepClock:
    def __init__(self):
        self.now = T0

    def __call__(self) -> datetime:
        self.now += timedelta(minutes=1)
        return self.now


def _verified_provider(store: WorkflowStore, provider_id: str) -> None:
    account = ProviderAccount(
        provider_id=provider_id,
        display_name=provider_id,
        verification_status=VerificationStatus.VERIFIED,
        registered_at=T0,
    )
    account.history.append(AuditEntry(status="verified", date=T0, reviewer="admin_1"))
    store.insert_provider(account)


def _disable(store: WorkflowStore, provider_id: str) -> None:
    account = store.load_provider(provider_id)
    account.status_history.append(AuditEntry(status="disabled", date=T0, reviewer="admin_1"))
    account.is_active = False
    store.save_provider(account)


@pytest.fixture
def store(tmp_path):
    store = WorkflowStore(db_path=str(tmp_path / "bookings.sqlite3"))
    _verified_provider(store, PROVIDER.user_id)
    return store


@pytest.fixture
def catalog(store):
    return ServiceCatalog(store=store, clock=StepClock())


@pytest.fixture
def workflow(store):
    return BookingWorkflow(store=store, clock=StepClock())


@pytest.fixture
def service_id(catalog):
    return catalog.add_service(PROVIDER, "Deep clean").id


def _book(workflow, service_id, actor=CUSTOMER):
    return workflow.create(
        actor,
        service_id=service_id,
        date="2026-03-10",
        time="14:30",
        location="12 Harbour St",
        notes="Two bedrooms",
    )


def test_scenario_booking_lifecycle(workflow, service_id):
    booking = _book(workflow, service_id)
    assert booking.status == BookingStatus.PENDING
    assert booking.provider_id == "prov_1"
    assert booking.status_history[0].notes == "Booking requested"
    assert booking.status_history[0].reviewer is None

    booking = workflow.confirm(PROVIDER, booking.id)
    booking = workflow.complete(PROVIDER, booking.id, notes="Done")
    assert booking.status == BookingStatus.COMPLETED
    assert [entry.status for entry in booking.status_history] == ["pending", "confirmed", "completed"]
    assert booking.status_history[-1].reviewer == "prov_1"
    assert booking.status_history[-1].notes == "Done"
    assert BOOKING_MACHINE.is_terminal(BookingStatus.COMPLETED.value)


def test_cancel_twice_is_invalid_and_adds_no_entry(workflow, service_id):
    booking = _book(workflow, service_id)
    workflow.cancel(CUSTOMER, booking.id)
    with pytest.raises(WorkflowInvalidStateError):
        workflow.cancel(CUSTOMER, booking.id)
    assert len(workflow.get_booking(CUSTOMER, booking.id).status_history) == 2


def test_provider_can_cancel_confirmed_booking(workflow, service_id):
    booking = _book(workflow, service_id)
    workflow.confirm(PROVIDER, booking.id)
    booking = workflow.cancel(PROVIDER, booking.id, notes="Van broke down")
    assert booking.status == BookingStatus.CANCELLED


def test_reject_requires_notes(workflow, service_id):
    booking = _book(workflow, service_id)
    with pytest.raises(WorkflowValidationError):
        workflow.reject(PROVIDER, booking.id, notes="  ")
    booking = workflow.reject(PROVIDER, booking.id, notes="Fully booked")
    assert booking.status == BookingStatus.REJECTED
    assert booking.status_history[-1].notes == "Fully booked"


def test_complete_requires_confirmation(workflow, service_id):
    booking = _book(workflow, service_id)
    with pytest.raises(WorkflowInvalidStateError):
        workflow.complete(PROVIDER, booking.id)


def test_customer_and_other_provider_cannot_confirm(workflow, service_id):
    booking = _book(workflow, service_id)
    with pytest.raises(WorkflowPermissionError):
        workflow.confirm(CUSTOMER, booking.id)
    with pytest.raises(WorkflowPermissionError):
        workflow.confirm(OTHER_PROVIDER, booking.id)
    with pytest.raises(WorkflowPermissionError):
        workflow.cancel(OTHER_CUSTOMER, booking.id)
    with pytest.raises(WorkflowNotFoundError, match="Booking not found"):
        workflow.get_booking(OTHER_CUSTOMER, booking.id)
    with pytest.raises(WorkflowNotFoundError, match="Booking not found"):
        workflow.get_booking(OTHER_PROVIDER, booking.id)


def test_create_validates_input(workflow, service_id):
    with pytest.raises(WorkflowValidationError):
        workflow.create(CUSTOMER, service_id=service_id, date="10/03/2026", time="14:30", location="x")
    with pytest.raises(WorkflowValidationError):
        workflow.create(CUSTOMER, service_id=service_id, date="2026-03-10", time="2pm", location="x")
    with pytest.raises(WorkflowValidationError):
        workflow.create(CUSTOMER, service_id=service_id, date="2026-03-10", time="14:30", location="  ")
    with pytest.raises(WorkflowNotFoundError):
        workflow.create(CUSTOMER, service_id="svc_missing", date="2026-03-10", time="14:30", location="x")
    with pytest.raises(WorkflowPermissionError):
        _book(workflow, service_id, actor=PROVIDER)


def test_unavailable_service_cannot_be_booked(workflow, catalog, service_id):
    catalog.set_availability(PROVIDER, service_id, False)
    with pytest.raises(ServiceUnavailableError):
        _book(workflow, service_id)


def test_disabled_provider_blocks_new_work_only(workflow, store, service_id):
    pending = _book(workflow, service_id)
    confirmed = _book(workflow, service_id)
    workflow.confirm(PROVIDER, confirmed.id)
    _disable(store, PROVIDER.user_id)

    with pytest.raises(ServiceUnavailableError):
        _book(workflow, service_id)
    with pytest.raises(ServiceUnavailableError):
        workflow.confirm(PROVIDER, pending.id)
    assert workflow.get_booking(CUSTOMER, pending.id).status == BookingStatus.PENDING

    assert workflow.complete(PROVIDER, confirmed.id).status == BookingStatus.COMPLETED
    assert workflow.reject(PROVIDER, pending.id, notes="Account suspended").status == BookingStatus.REJECTED


def test_listing_is_scoped_to_the_caller(workflow, service_id):
    first = _book(workflow, service_id)
    second = _book(workflow, service_id)
    workflow.confirm(PROVIDER, second.id)

    all_bookings = workflow.list_for_provider(PROVIDER, PROVIDER.user_id)
    assert {item.id for item in all_bookings} == {first.id, second.id}
    confirmed = workflow.list_for_provider(PROVIDER, PROVIDER.user_id, status=BookingStatus.CONFIRMED)
    assert [item.id for item in confirmed] == [second.id]
    assert len(workflow.list_for_customer(CUSTOMER, CUSTOMER.user_id)) == 2
    assert workflow.list_for_customer(OTHER_CUSTOMER, OTHER_CUSTOMER.user_id) == []

    with pytest.raises(WorkflowPermissionError):
        workflow.list_for_provider(OTHER_PROVIDER, PROVIDER.user_id)
    with pytest.raises(WorkflowPermissionError):
        workflow.list_for_customer(PROVIDER, CUSTOMER.user_id)


def test_catalog_requires_verified_active_owner(store, catalog, service_id):
    _verified_provider(store, OTHER_PROVIDER.user_id)
    with pytest.raises(WorkflowPermissionError):
        catalog.set_availability(OTHER_PROVIDER, service_id, False)
    with pytest.raises(WorkflowValidationError):
        catalog.add_service(PROVIDER, "   ")

    unverified = ProviderAccount(provider_id="prov_3", display_name="New", registered_at=T0)
    store.insert_provider(unverified)
    with pytest.raises(WorkflowPermissionError):
        catalog.add_service(Actor(user_id="prov_3", role=ActorRole.PROVIDER), "Windows")

    _disable(store, PROVIDER.user_id)
    with pytest.raises(WorkflowPermissionError):
        catalog.add_service(PROVIDER, "Carpets")


def _race(first, second):
    barrier = threading.Barrier(2)
    outcomes = []

    def run(call):
        barrier.wait()
        try:
            outcomes.append(call())
        except WorkflowInvalidStateError as exc:
            outcomes.append(exc)

    threads = [threading.Thread(target=run, args=(call,)) for call in (first, second)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return outcomes


@pytest.mark.parametrize("shared_store", [True, False])
def test_confirm_and_reject_race_has_one_winner(store, service_id, shared_store):
    creator = BookingWorkflow(store=store, clock=StepClock())
    # A second store on the same file stands in for another worker process.
    other_store = store if shared_store else WorkflowStore(db_path=store.db_path)

    for _ in range(5):
        booking = _book(creator, service_id)
        confirmer = BookingWorkflow(store=store, clock=StepClock())
        rejecter = BookingWorkflow(store=other_store, clock=StepClock())
        outcomes = _race(
            lambda: confirmer.confirm(PROVIDER, booking.id),
            lambda: rejecter.reject(PROVIDER, booking.id, notes="Double booked"),
        )

        assert len(outcomes) == 2
        failures = [item for item in outcomes if isinstance(item, WorkflowInvalidStateError)]
        assert len(failures) == 1
        winner = next(item for item in outcomes if not isinstance(item, WorkflowInvalidStateError))
        stored = creator.get_booking(CUSTOMER, booking.id)
        assert stored.status == winner.status
        assert [entry.status for entry in stored.status_history] == ["pending", winner.status.value]


def test_entity_locks_are_released_after_transitions(store, workflow, service_id):
    booking = _book(workflow, service_id)
    workflow.confirm(PROVIDER, booking.id)
    with pytest.raises(WorkflowInvalidStateError):
        workflow.confirm(PROVIDER, booking.id)
    assert store._entity_locks == {}

    with store.entity_lock("booking", booking.id):
        assert ("booking", booking.id) in store._entity_locks
    assert store._entity_locks == {}
