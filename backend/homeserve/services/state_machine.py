"""Explicit transition tables shared by the verification and booking workflows.

A workflow declares its legal moves as ``TransitionRule`` rows keyed by
``(current_state, transition_name)``. ``StateMachine.resolve`` is the single
guard every mutation goes through: permission first, then state, then
required fields.
"""

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from homeserve.models import Actor, ActorRole
from homeserve.services.errors import (
    WorkflowInvalidStateError,
    WorkflowPermissionError,
    WorkflowValidationError,
)
from homeserve.services.permission_guard import ensure_can_transition


@dataclass(frozen=True)
class TransitionRule:
    name: str
    from_state: str
    to_state: str
    roles: FrozenSet[ActorRole]
    required_fields: Tuple[str, ...] = ()


class StateMachine:
    def __init__(self, entity_kind: str, rules: Iterable[TransitionRule]) -> None:
        self.entity_kind = entity_kind
        self._rules: Dict[Tuple[str, str], TransitionRule] = {}
        for rule in rules:
            key = (rule.from_state, rule.name)
            if key in self._rules:
                raise ValueError(f"Duplicate transition {rule.name!r} from {rule.from_state!r}")
            self._rules[key] = rule

    def rule_for(self, current_state: str, transition: str) -> Optional[TransitionRule]:
        return self._rules.get((current_state, transition))

    def allowed_transitions(self, current_state: str) -> List[str]:
        return sorted(name for state, name in self._rules if state == current_state)

    def is_terminal(self, state: str) -> bool:
        return not self.allowed_transitions(state)

    def resolve(
        self,
        *,
        actor: Actor,
        entity: Any,
        transition: str,
        fields: Optional[Mapping[str, Optional[str]]] = None,
    ) -> TransitionRule:
        ensure_can_transition(actor, entity, transition)

        current = str(entity.status.value if hasattr(entity.status, "value") else entity.status)
        rule = self.rule_for(current, transition)
        if rule is None:
            raise WorkflowInvalidStateError(f"Cannot {transition} a {self.entity_kind} in status {current}")
        if actor.role not in rule.roles:
            raise WorkflowPermissionError(f"Only {', '.join(sorted(r.value for r in rule.roles))} may {transition}")

        values = fields or {}
        for name in rule.required_fields:
            value = values.get(name)
            if value is None or not str(value).strip():
                raise WorkflowValidationError(f"{name} is required to {transition}")
        return rule
