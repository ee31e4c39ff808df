"""Record change notifications.

Transports (Redis pub/sub in the services) turn raw messages into
:class:`RecordChange` objects and hand them to a :class:`RecordChangeHub`.
Subscribers only see the callback contract
``on_record_changed(patient_id, changed_fields)``.
"""

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

RecordChangedCallback = Callable[[uuid.UUID, Dict[str, Any]], None]


class ChangeAction(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class RecordChange:
    patient_id: uuid.UUID
    table: str
    action: ChangeAction
    record_id: Optional[str] = None
    fields: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_event(cls, data: Dict[str, Any]) -> "RecordChange":
        """Parse a published event; raises ``ValueError``/``KeyError`` on junk."""
        return cls(
            patient_id=uuid.UUID(str(data["patient_id"])),
            table=str(data["table"]),
            action=ChangeAction(data["action"]),
            record_id=str(data["id"]) if data.get("id") is not None else None,
            fields=dict(data.get("fields") or {}),
        )

    def to_event(self) -> Dict[str, Any]:
        return {
            "patient_id": str(self.patient_id),
            "table": self.table,
            "action": self.action.value,
            "id": self.record_id,
            "fields": self.fields,
        }

    def changed_fields(self) -> Dict[str, Any]:
        """Field set handed to subscribers; always carries ``id``, ``table`` and ``action``."""
        changed = dict(self.fields)
        changed["id"] = self.record_id
        changed["table"] = self.table
        changed["action"] = self.action.value
        if self.action is ChangeAction.DELETE:
            changed["deleted"] = True
        return changed


class RecordChangeHub:
    def __init__(self):
        self._subscribers: List[RecordChangedCallback] = []

    def subscribe(self, callback: RecordChangedCallback) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, change: RecordChange) -> None:
        changed = change.changed_fields()
        for callback in list(self._subscribers):
            try:
                callback(change.patient_id, dict(changed))
            except Exception:
                # One broken subscriber must not starve the others
                logger.exception("Record change subscriber failed for %s", change.patient_id)
