from typing import Any, Dict, FrozenSet, Tuple

from homeserve.models import Actor, ActorRole
from homeserve.services.errors import WorkflowNotFoundError, WorkflowPermissionError

VERIFICATION_ENTITY = "verification"
BOOKING_ENTITY = "booking"

_NOT_FOUND_MESSAGES = {VERIFICATION_ENTITY: "Provider not found", BOOKING_ENTITY: "Booking not found"}

# Which transitions each role may invoke on each kind of entity. Ownership is
# checked separately in can_transition.
ROLE_TRANSITIONS: Dict[Tuple[str, ActorRole], FrozenSet[str]] = {
    (VERIFICATION_ENTITY, ActorRole.PROVIDER): frozenset(
        {"register", "submit", "resubmit", "add_document", "delete_document"}
    ),
    (VERIFICATION_ENTITY, ActorRole.ADMINISTRATOR): frozenset({"approve", "reject", "set_active"}),
    (BOOKING_ENTITY, ActorRole.PROVIDER): frozenset({"confirm", "reject", "complete", "cancel"}),
    (BOOKING_ENTITY, ActorRole.CUSTOMER): frozenset({"create", "cancel"}),
}


def _owns(actor_role: ActorRole, actor_id: str, entity: Any) -> bool:
    if actor_role == ActorRole.PROVIDER:
        return getattr(entity, "provider_id", None) == actor_id
    if actor_role == ActorRole.CUSTOMER:
        return getattr(entity, "customer_id", None) == actor_id
    return actor_role == ActorRole.ADMINISTRATOR


def can_transition(actor_role: ActorRole, actor_id: str, entity: Any, transition: str) -> bool:
    allowed = ROLE_TRANSITIONS.get((entity.entity_kind, actor_role), frozenset())
    if transition not in allowed:
        return False
    return _owns(actor_role, actor_id, entity)


def can_view(actor_role: ActorRole, actor_id: str, entity: Any) -> bool:
    if actor_role == ActorRole.ADMINISTRATOR:
        return entity.entity_kind == VERIFICATION_ENTITY
    if actor_role == ActorRole.CUSTOMER and entity.entity_kind != BOOKING_ENTITY:
        return False
    return _owns(actor_role, actor_id, entity)


def ensure_can_transition(actor: Actor, entity: Any, transition: str) -> None:
    if not can_transition(actor.role, actor.user_id, entity, transition):
        raise WorkflowPermissionError(
            f"{actor.role.value} {actor.user_id} is not allowed to {transition} this {entity.entity_kind}"
        )


def ensure_can_view(actor: Actor, entity: Any) -> None:
    # Same error and message as a missing entity.
    if not can_view(actor.role, actor.user_id, entity):
        raise WorkflowNotFoundError(_NOT_FOUND_MESSAGES[entity.entity_kind])
