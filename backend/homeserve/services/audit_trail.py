from typing import Iterable, Iterator, List, Optional, Tuple

from homeserve.models import AuditEntry
from homeserve.services.errors import WorkflowValidationError


class AuditTrail:
    """Append-only, time-ordered history of status changes."""

    def __init__(self, entries: Optional[Iterable[AuditEntry]] = None) -> None:
        self._entries: List[AuditEntry] = []
        for entry in entries or ():
            self.append(entry)

    def append(self, entry: AuditEntry) -> AuditEntry:
        last = self.latest()
        if last is not None and entry.date < last.date:
            raise WorkflowValidationError(
                f"Audit entry dated {entry.date.isoformat()} precedes latest entry {last.date.isoformat()}"
            )
        self._entries.append(entry)
        return entry

    def latest(self) -> Optional[AuditEntry]:
        if not self._entries:
            return None
        return self._entries[-1]

    @property
    def entries(self) -> Tuple[AuditEntry, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[AuditEntry]:
        return iter(tuple(self._entries))
