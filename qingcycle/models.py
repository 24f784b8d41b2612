"""
Core data model shared by drivers and the lifecycle layer.

Resource handles, remote states and the typed attribute sets the
declarative layer diffs against each other.
"""

import hashlib
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, FrozenSet, Optional, Set

from pydantic import BaseModel, ConfigDict

# Status reported for a resource the describe call no longer returns.
ABSENT = "absent"


class ResourceKind(Enum):
    """Resource kinds with a lifecycle driver."""

    INSTANCE = "instance"
    CACHE = "cache"


class StateClass(Enum):
    """How the orchestrator treats a remote state."""

    STABLE = "stable"
    TRANSITIONAL = "transitional"
    GONE = "gone"


@dataclass(frozen=True)
class RemoteState:
    """Status and in-flight transition reported by a describe call."""

    status: str
    transition_status: str = ""

    def __str__(self) -> str:
        if self.transition_status:
            return f"{self.status}/{self.transition_status}"
        return self.status


@dataclass
class ResourceHandle:
    """Identifier of a provisioned resource, cleared once it is deleted."""

    kind: str
    resource_id: Optional[str] = None

    @property
    def exists(self) -> bool:
        return bool(self.resource_id)

    def clear(self) -> None:
        self.resource_id = None

    def __str__(self) -> str:
        return f"{self.kind}:{self.resource_id or '<none>'}"


class AttributeSet(BaseModel):
    """
    Typed attribute set of one resource.

    Subclasses list their server-populated fields in ``COMPUTED``; those are
    never part of a diff.
    """

    model_config = ConfigDict(frozen=True)

    COMPUTED: ClassVar[FrozenSet[str]] = frozenset()

    def changed_fields(self, current: "AttributeSet") -> Set[str]:
        """Names of the fields whose desired value differs from ``current``."""
        changed = set()
        for name in type(self).model_fields:
            if name in self.COMPUTED:
                continue
            if getattr(self, name) != getattr(current, name):
                changed.add(name)
        return changed

    def fingerprint(self) -> str:
        """Stable digest of the attribute values."""
        payload = json.dumps(
            {k: _normalize(v) for k, v in self.model_dump().items()},
            sort_keys=True,
            default=str,
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _normalize(value: Any) -> Any:
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    return value


@dataclass(frozen=True)
class Observation:
    """One describe result: the state plus the mapped attributes."""

    state: RemoteState
    attributes: Optional[AttributeSet] = None

    @classmethod
    def absent(cls) -> "Observation":
        return cls(RemoteState(ABSENT))
