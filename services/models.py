"""Task, dependency and schedule-node records shared by the validator and the scheduler."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

EPOCH = date(1970, 1, 1)
DEFAULT_DURATION = 1


class DependencyType(str, Enum):
    FINISH_TO_START = "FS"
    START_TO_START = "SS"
    FINISH_TO_FINISH = "FF"
    START_TO_FINISH = "SF"


DEPENDENCY_TYPES = tuple(kind.value for kind in DependencyType)


def to_days(value: date) -> int:
    """Day number of ``value`` counted from 1970-01-01.

    Aware datetimes are moved to UTC first; naive ones are read as UTC.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        value = value.date()
    return (value - EPOCH).days


def from_days(days: int) -> date:
    try:
        return EPOCH + timedelta(days=days)
    except OverflowError:
        raise ValueError(f"Day {days} is outside the supported calendar ({date.min} to {date.max}).")


def parse_date(value: Any) -> Optional[date]:
    """Read a JSON date (``YYYY-MM-DD`` or an ISO timestamp) into a ``date``."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return from_days(to_days(value))
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError(f"Invalid date {value!r}: expected an ISO 8601 string.")
    try:
        if len(value) == 10:
            return date.fromisoformat(value)
        return from_days(to_days(datetime.fromisoformat(value.replace("Z", "+00:00"))))
    except ValueError:
        raise ValueError(f"Invalid date {value!r}: expected an ISO 8601 string.")


def today_utc() -> date:
    return datetime.now(timezone.utc).date()


@dataclass(frozen=True)
class Task:
    id: str
    name: str = ""
    duration: Optional[int] = None
    start_date: Optional[date] = None

    @property
    def effective_duration(self) -> int:
        return int(self.duration or DEFAULT_DURATION)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        return cls(
            id=data["id"],
            name=data.get("name") or data["id"],
            duration=data.get("duration"),
            start_date=parse_date(data.get("startDate")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "duration": self.duration,
            "startDate": self.start_date.isoformat() if self.start_date else None,
        }


@dataclass(frozen=True)
class TaskDependency:
    """Directed edge ``predecessor_id -> successor_id``.

    ``type`` keeps the raw value so an unknown relationship kind can be
    reported by the validator instead of failing on construction.
    """

    id: str
    predecessor_id: str
    successor_id: str
    type: str = DependencyType.FINISH_TO_START.value
    lag: int = 0

    @property
    def kind(self) -> DependencyType:
        return DependencyType(self.type)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskDependency":
        predecessor_id = data["predecessorId"]
        successor_id = data["successorId"]
        return cls(
            id=data.get("id") or f"{predecessor_id}->{successor_id}",
            predecessor_id=predecessor_id,
            successor_id=successor_id,
            type=data.get("type") or DependencyType.FINISH_TO_START.value,
            lag=data.get("lag") or 0,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "predecessorId": self.predecessor_id,
            "successorId": self.successor_id,
            "type": self.type,
            "lag": self.lag,
        }


@dataclass(frozen=True)
class Link:
    """One dependency seen from a node: the task on the other end, the relationship and its lag."""

    task_id: str
    type: DependencyType
    lag: int = 0


@dataclass
class TaskNode:
    """Scheduling result for one task.

    Dates are held as day numbers (see :func:`to_days`) and exposed as
    ``date`` objects through the ``earliest_*``/``latest_*`` properties.
    ``predecessors`` and ``successors`` hold one :class:`Link` per dependency.
    """

    task: Task
    predecessors: List[Link] = field(default_factory=list)
    successors: List[Link] = field(default_factory=list)
    es: Optional[int] = None
    ef: Optional[int] = None
    ls: Optional[int] = None
    lf: Optional[int] = None
    total_float: int = 0
    raw_float: int = 0
    is_critical: bool = False
    is_infeasible: bool = False

    @property
    def task_id(self) -> str:
        return self.task.id

    @property
    def duration(self) -> int:
        return self.task.effective_duration

    @property
    def is_root(self) -> bool:
        return not self.predecessors

    @property
    def is_sink(self) -> bool:
        return not self.successors

    @property
    def earliest_start(self) -> Optional[date]:
        return None if self.es is None else from_days(self.es)

    @property
    def earliest_finish(self) -> Optional[date]:
        return None if self.ef is None else from_days(self.ef)

    @property
    def latest_start(self) -> Optional[date]:
        return None if self.ls is None else from_days(self.ls)

    @property
    def latest_finish(self) -> Optional[date]:
        return None if self.lf is None else from_days(self.lf)

    def to_dict(self) -> Dict[str, Any]:
        def iso(value: Optional[date]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "id": self.task_id,
            "name": self.task.name,
            "duration": self.duration,
            "earliestStart": iso(self.earliest_start),
            "earliestFinish": iso(self.earliest_finish),
            "latestStart": iso(self.latest_start),
            "latestFinish": iso(self.latest_finish),
            "float": self.total_float,
            "isCritical": self.is_critical,
            "isInfeasible": self.is_infeasible,
            "predecessors": [link.task_id for link in self.predecessors],
            "successors": [link.task_id for link in self.successors],
        }


@dataclass(frozen=True)
class ScheduledTask:
    """A task annotated with its computed float and criticality."""

    task: Task
    total_float: int
    is_critical: bool
    earliest_start: Optional[date] = None
    latest_start: Optional[date] = None

    @property
    def id(self) -> str:
        return self.task.id

    def to_dict(self) -> Dict[str, Any]:
        data = self.task.to_dict()
        data.update(
            {
                "float": self.total_float,
                "isCritical": self.is_critical,
                "earliestStart": self.earliest_start.isoformat() if self.earliest_start else None,
                "latestStart": self.latest_start.isoformat() if self.latest_start else None,
            }
        )
        return data
