"""Dependency validation: structural checks, cycle detection and dependency chains.

Everything here reports findings as data. The one exception is
:func:`build_graph`, which turns a failed verdict into
:class:`InvalidDependencyGraph` so that the scheduler only ever receives a
graph already known to be acyclic.
"""
from __future__ import annotations

import logging
from collections import Counter, defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Sequence, Tuple

from services.models import DEPENDENCY_TYPES, Task, TaskDependency

logger = logging.getLogger(__name__)

MAX_LAG_DAYS = 365
DIRECTIONS = ("predecessors", "successors")


@dataclass
class ValidationResult:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {"isValid": self.is_valid, "errors": list(self.errors), "warnings": list(self.warnings)}


class InvalidDependencyGraph(ValueError):
    """Raised when a task/dependency snapshot fails validation."""

    def __init__(self, result: ValidationResult):
        self.result = result
        super().__init__("; ".join(result.errors) or "Invalid dependency graph")


@dataclass(frozen=True)
class AcyclicGraph:
    """A validated snapshot together with its topological order.

    Build it with :func:`build_graph`; the scheduler relies on ``order``
    listing every task after all of its predecessors.
    """

    tasks: Tuple[Task, ...]
    dependencies: Tuple[TaskDependency, ...]
    order: Tuple[str, ...]
    warnings: Tuple[str, ...] = ()


def _is_whole_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and value.is_integer()


def topological_order(task_ids: Iterable[str], edges: Iterable[Tuple[str, str]]) -> Tuple[List[str], List[str]]:
    """Kahn's algorithm over ``task_ids``.

    Edges with an end outside ``task_ids`` are ignored. Returns the processed
    ids in order and the ids whose in-degree never reached zero; the second
    list is empty iff the graph is acyclic.
    """
    indegree: Dict[str, int] = {task_id: 0 for task_id in task_ids}
    successors: Dict[str, List[str]] = defaultdict(list)
    for predecessor_id, successor_id in edges:
        if predecessor_id in indegree and successor_id in indegree:
            successors[predecessor_id].append(successor_id)
            indegree[successor_id] += 1

    queue: deque[str] = deque(task_id for task_id, degree in indegree.items() if degree == 0)
    order: List[str] = []
    while queue:
        current = queue.popleft()
        order.append(current)
        for successor_id in successors[current]:
            indegree[successor_id] -= 1
            if indegree[successor_id] == 0:
                queue.append(successor_id)

    stuck = [task_id for task_id, degree in indegree.items() if degree > 0]
    return order, stuck


def _edges(dependencies: Iterable[TaskDependency]) -> List[Tuple[str, str]]:
    return [(dep.predecessor_id, dep.successor_id) for dep in dependencies]


def detect_cycles(tasks: Sequence[Task], dependencies: Sequence[TaskDependency]) -> List[str]:
    """Return cycle errors for the graph; an empty list means it is acyclic."""
    task_ids = list(dict.fromkeys(task.id for task in tasks))
    order, stuck = topological_order(task_ids, _edges(dependencies))
    if len(order) >= len(task_ids):
        return []

    errors = ["Circular dependency detected: tasks form a dependency loop"]
    if stuck:
        errors.append(f"Tasks involved in cycle: {', '.join(stuck)}")
    logger.debug(f"Cycle detected, {len(stuck)} task(s) never became ready: {stuck}")
    return errors


def would_create_cycle(candidate: TaskDependency, existing: Sequence[TaskDependency]) -> bool:
    """Check whether adding ``candidate`` to ``existing`` closes a loop.

    Only the cycle structure is checked: the nodes are the ids the
    dependencies name, so the candidate's references are not validated.
    """
    trial = list(existing) + [candidate]
    task_ids = dict.fromkeys(task_id for dep in trial for task_id in (dep.predecessor_id, dep.successor_id))
    return bool(detect_cycles([Task(id=task_id) for task_id in task_ids], trial))


def dependency_chains(
    task_id: str,
    dependencies: Sequence[TaskDependency],
    direction: str = "predecessors",
) -> List[List[str]]:
    """All maximal chains of direct predecessors (or successors) starting at ``task_id``.

    A task already on the current path is not entered again, so malformed
    cyclic input terminates, but the chains returned for it are not
    meaningful.
    """
    if direction not in DIRECTIONS:
        raise ValueError(f"direction must be one of: {', '.join(DIRECTIONS)}; got '{direction}'")

    neighbours: Dict[str, List[str]] = defaultdict(list)
    for dep in dependencies:
        if direction == "predecessors":
            neighbours[dep.successor_id].append(dep.predecessor_id)
        else:
            neighbours[dep.predecessor_id].append(dep.successor_id)

    chains: List[List[str]] = []

    def traverse(current: str, chain: List[str]) -> None:
        if current in chain:
            return
        chain = chain + [current]
        following = neighbours.get(current, [])
        if not following:
            chains.append(chain)
            return
        for next_id in following:
            traverse(next_id, chain)

    traverse(task_id, [])
    return chains


def validate(tasks: Sequence[Task], dependencies: Sequence[TaskDependency]) -> ValidationResult:
    """Check a task/dependency snapshot. Never raises; see ``ValidationResult.is_valid``."""
    result = ValidationResult()
    errors, warnings = result.errors, result.warnings

    seen, duplicated = set(), set()
    for task in tasks:
        if task.id in seen:
            duplicated.add(task.id)
        seen.add(task.id)
        if task.duration is not None and not (_is_whole_number(task.duration) and task.duration >= 0):
            errors.append(f"Task {task.id}: 'duration' must be a whole number of days >= 0, got {task.duration!r}")
    if duplicated:
        errors.append(f"Duplicate task ids found: {', '.join(sorted(duplicated))}")

    task_ids = seen
    for index, dep in enumerate(dependencies, start=1):
        if dep.predecessor_id not in task_ids:
            errors.append(f"Dependency {index}: invalid predecessor task id '{dep.predecessor_id}'")
        if dep.successor_id not in task_ids:
            errors.append(f"Dependency {index}: invalid successor task id '{dep.successor_id}'")
        if dep.predecessor_id == dep.successor_id:
            errors.append(f"Dependency {index}: task '{dep.predecessor_id}' cannot depend on itself")
        if dep.type not in DEPENDENCY_TYPES:
            errors.append(
                f"Dependency {index}: invalid dependency type '{dep.type}'. Must be one of: {', '.join(DEPENDENCY_TYPES)}"
            )
        if not _is_whole_number(dep.lag):
            errors.append(f"Dependency {index}: lag must be a whole number of days, got {dep.lag!r}")
        elif abs(dep.lag) > MAX_LAG_DAYS:
            warnings.append(f"Dependency {index}: unusual lag value {dep.lag} days. Consider reviewing.")

    triples = set()
    for index, dep in enumerate(dependencies, start=1):
        key = (dep.predecessor_id, dep.successor_id, dep.type)
        if key in triples:
            warnings.append(
                f"Dependency {index}: Duplicate dependency between tasks {dep.predecessor_id} and {dep.successor_id}"
            )
        triples.add(key)

    # Pairs linked by more than one relationship kind
    kinds_by_pair: Dict[Tuple[str, str], List[str]] = defaultdict(list)
    for dep in dependencies:
        kinds = kinds_by_pair[(dep.predecessor_id, dep.successor_id)]
        if dep.type not in kinds:
            kinds.append(dep.type)
    pair_counts = Counter(_edges(dependencies))
    for (predecessor_id, successor_id), kinds in kinds_by_pair.items():
        if len(kinds) > 1:
            warnings.append(
                f"Tasks {predecessor_id} and {successor_id} are linked by {pair_counts[(predecessor_id, successor_id)]} "
                f"dependencies ({', '.join(kinds)}); they may be redundant"
            )

    errors.extend(detect_cycles(tasks, dependencies))

    logger.debug(
        f"Validated {len(tasks)} task(s) and {len(dependencies)} dependency(ies): "
        f"{len(errors)} error(s), {len(warnings)} warning(s)"
    )
    return result


def build_graph(tasks: Sequence[Task], dependencies: Sequence[TaskDependency]) -> AcyclicGraph:
    """Validate the snapshot and return it with its topological order.

    Raises :class:`InvalidDependencyGraph` carrying the full verdict when
    validation fails.
    """
    result = validate(tasks, dependencies)
    if not result.is_valid:
        logger.info(f"Rejected dependency graph: {len(result.errors)} error(s)")
        raise InvalidDependencyGraph(result)

    order, _ = topological_order([task.id for task in tasks], _edges(dependencies))
    return AcyclicGraph(
        tasks=tuple(tasks),
        dependencies=tuple(dependencies),
        order=tuple(order),
        warnings=tuple(result.warnings),
    )
