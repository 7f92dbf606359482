import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Union

from services.models import (
    DependencyType,
    Link,
    ScheduledTask,
    Task,
    TaskDependency,
    TaskNode,
    to_days,
    today_utc,
)
from services.validation import AcyclicGraph, InvalidDependencyGraph, ValidationResult, build_graph, topological_order

logger = logging.getLogger(__name__)

BOTTLENECK_THRESHOLD_DAYS = 2
MIN_DAY = to_days(date.min)
MAX_DAY = to_days(date.max)


def _build_nodes(graph: AcyclicGraph) -> Dict[str, TaskNode]:
    nodes: Dict[str, TaskNode] = {task.id: TaskNode(task=task) for task in graph.tasks}
    for dep in graph.dependencies:
        kind, lag = dep.kind, int(dep.lag)
        nodes[dep.predecessor_id].successors.append(Link(dep.successor_id, kind, lag))
        nodes[dep.successor_id].predecessors.append(Link(dep.predecessor_id, kind, lag))
    return nodes


def _start_constraint(link: Link, predecessor: TaskNode, duration: int) -> int:
    """Earliest start a single incoming dependency allows."""
    if link.type is DependencyType.FINISH_TO_START:
        return predecessor.ef + link.lag
    if link.type is DependencyType.START_TO_START:
        return predecessor.es + link.lag
    if link.type is DependencyType.FINISH_TO_FINISH:
        return predecessor.ef + link.lag - duration
    return predecessor.es + link.lag - duration


def _finish_constraint(link: Link, successor: TaskNode, duration: int) -> int:
    """Latest finish a single outgoing dependency allows."""
    if link.type is DependencyType.FINISH_TO_START:
        return successor.ls - link.lag
    if link.type is DependencyType.START_TO_START:
        return successor.ls - link.lag + duration
    if link.type is DependencyType.FINISH_TO_FINISH:
        return successor.lf - link.lag
    return successor.lf - link.lag + duration


def forward_pass(graph: AcyclicGraph, today: Optional[date] = None) -> List[TaskNode]:
    """
    Earliest start/finish for every task of a validated graph.
    Tasks without predecessors start on their own start date, or ``today``
    (UTC) when they have none. Other tasks start as soon as every incoming
    dependency allows, and never before the earliest root start.
    Nodes are returned in processing (topological) order.
    """
    nodes = _build_nodes(graph)
    default_start = to_days(today or today_utc())

    for node in nodes.values():
        if node.is_root:
            node.es = to_days(node.task.start_date) if node.task.start_date else default_start
    project_start = min((node.es for node in nodes.values() if node.is_root), default=default_start)

    for task_id in graph.order:
        node = nodes[task_id]
        if not node.is_root:
            node.es = max(
                project_start,
                max(_start_constraint(link, nodes[link.task_id], node.duration) for link in node.predecessors),
            )
        node.ef = node.es + node.duration

    return [nodes[task_id] for task_id in graph.order]


def backward_pass(nodes: Sequence[TaskNode], project_end_date: Optional[date] = None) -> List[TaskNode]:
    """
    Latest start/finish, float and criticality for nodes produced by :func:`forward_pass`.
    Sinks finish at ``project_end_date`` when given, otherwise at their own
    earliest finish. Float below zero is reported through ``is_infeasible``
    and ``raw_float``; ``total_float`` itself never goes negative.
    """
    by_id: Dict[str, TaskNode] = {node.task_id: node for node in nodes}
    edges = [(link.task_id, node.task_id) for node in nodes for link in node.predecessors]
    order, _ = topological_order(by_id, edges)
    deadline = to_days(project_end_date) if project_end_date is not None else None

    for task_id in reversed(order):
        node = by_id[task_id]
        if node.is_sink:
            node.lf = node.ef if deadline is None else deadline
        else:
            node.lf = min(_finish_constraint(link, by_id[link.task_id], node.duration) for link in node.successors)
        node.ls = node.lf - node.duration
        node.raw_float = node.ls - node.es
        node.total_float = max(0, node.raw_float)
        node.is_infeasible = node.raw_float < 0
        node.is_critical = node.total_float == 0
        if node.is_infeasible:
            logger.warning(f"Task {task_id} is {-node.raw_float} day(s) behind its latest allowed start")

    return list(nodes)


def _compute(
    tasks: Sequence[Task],
    dependencies: Sequence[TaskDependency],
    project_end_date: Optional[date] = None,
    today: Optional[date] = None,
) -> List[TaskNode]:
    return _run(build_graph(tasks, dependencies), project_end_date, today)


def _run(graph: AcyclicGraph, project_end_date: Optional[date], today: Optional[date]) -> List[TaskNode]:
    """Both passes over a validated graph; dates past the calendar range reject the snapshot."""
    nodes = backward_pass(forward_pass(graph, today=today), project_end_date)
    errors = [
        f"Task {node.task_id}: computed dates fall outside the supported calendar ({date.min} to {date.max})"
        for node in nodes
        if min(node.es, node.ls) < MIN_DAY or max(node.ef, node.lf) > MAX_DAY
    ]
    if errors:
        raise InvalidDependencyGraph(ValidationResult(errors=errors, warnings=list(graph.warnings)))
    return nodes


def _annotate(node: TaskNode) -> ScheduledTask:
    return ScheduledTask(
        task=node.task,
        total_float=node.total_float,
        is_critical=node.is_critical,
        earliest_start=node.earliest_start,
        latest_start=node.latest_start,
    )


def _project_duration(nodes: Sequence[TaskNode]) -> int:
    if not nodes:
        return 0
    return max(node.ef for node in nodes) - min(node.es for node in nodes)


def critical_path(
    tasks: Sequence[Task],
    dependencies: Sequence[TaskDependency],
    project_end_date: Optional[date] = None,
    today: Optional[date] = None,
) -> List[ScheduledTask]:
    """
    Tasks with zero float, in node-processing order.
    Re-sort by ``earliest_start`` when precedence order matters.
    Raises InvalidDependencyGraph if the snapshot does not validate.
    """
    nodes = _compute(tasks, dependencies, project_end_date, today)
    return [_annotate(node) for node in nodes if node.is_critical]


@dataclass
class ScheduleOk:
    nodes: List[TaskNode]
    warnings: List[str] = field(default_factory=list)
    ok = True

    @property
    def critical_path(self) -> List[TaskNode]:
        return [node for node in self.nodes if node.is_critical]

    @property
    def project_duration(self) -> int:
        return _project_duration(self.nodes)

    @property
    def is_infeasible(self) -> bool:
        return any(node.is_infeasible for node in self.nodes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "projectDuration": self.project_duration,
            "criticalPath": [node.task_id for node in self.critical_path],
            "isInfeasible": self.is_infeasible,
            "nodes": [node.to_dict() for node in self.nodes],
            "warnings": list(self.warnings),
        }


@dataclass
class ScheduleErr:
    validation: ValidationResult
    ok = False

    def to_dict(self) -> Dict[str, Any]:
        return self.validation.to_dict()


ScheduleResult = Union[ScheduleOk, ScheduleErr]


def schedule(
    tasks: Sequence[Task],
    dependencies: Sequence[TaskDependency],
    project_end_date: Optional[date] = None,
    today: Optional[date] = None,
) -> ScheduleResult:
    """Validate and schedule in one call; invalid input comes back as ScheduleErr, never as an exception."""
    try:
        graph = build_graph(tasks, dependencies)
        nodes = _run(graph, project_end_date, today)
    except InvalidDependencyGraph as exc:
        return ScheduleErr(validation=exc.result)

    result = ScheduleOk(nodes=nodes, warnings=list(graph.warnings))
    logger.info(
        f"Scheduled {len(nodes)} task(s), project duration {result.project_duration} day(s), "
        f"critical path: {[node.task_id for node in result.critical_path]}"
    )
    return result


@dataclass
class CriticalPathResult:
    critical_tasks: List[ScheduledTask]
    project_duration: int
    total_float: int
    critical_path_length: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "criticalTasks": [task.to_dict() for task in self.critical_tasks],
            "projectDuration": self.project_duration,
            "totalFloat": self.total_float,
            "criticalPathLength": self.critical_path_length,
        }


def find_critical_path(
    tasks: Sequence[Task],
    dependencies: Sequence[TaskDependency],
    project_end_date: Optional[date] = None,
    today: Optional[date] = None,
) -> CriticalPathResult:
    """
    Critical path summary: the critical tasks sorted by earliest start,
    the project span in days (latest earliest-finish minus first earliest-start)
    and the float summed over all tasks.
    """
    nodes = _compute(tasks, dependencies, project_end_date, today)
    critical = sorted((node for node in nodes if node.is_critical), key=lambda node: node.es)
    return CriticalPathResult(
        critical_tasks=[_annotate(node) for node in critical],
        project_duration=_project_duration(nodes),
        total_float=sum(node.total_float for node in nodes),
        critical_path_length=len(critical),
    )


def tasks_with_scheduling(
    tasks: Sequence[Task],
    dependencies: Sequence[TaskDependency],
    today: Optional[date] = None,
) -> List[ScheduledTask]:
    return [_annotate(node) for node in _compute(tasks, dependencies, today=today)]


def find_bottleneck_tasks(
    tasks: Sequence[Task],
    dependencies: Sequence[TaskDependency],
    threshold: int = BOTTLENECK_THRESHOLD_DAYS,
    today: Optional[date] = None,
) -> List[ScheduledTask]:
    """Non-critical tasks whose float is at most ``threshold`` days, least float first."""
    scheduled = tasks_with_scheduling(tasks, dependencies, today=today)
    return sorted(
        (task for task in scheduled if 0 < task.total_float <= threshold),
        key=lambda task: task.total_float,
    )


def calculate_project_buffer(
    tasks: Sequence[Task],
    dependencies: Sequence[TaskDependency],
    today: Optional[date] = None,
) -> int:
    return sum(task.total_float for task in tasks_with_scheduling(tasks, dependencies, today=today))


@dataclass
class ScheduleEfficiency:
    critical_task_ratio: float
    average_float: float
    bottleneck_tasks: int
    schedule_risk: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "criticalTaskRatio": self.critical_task_ratio,
            "averageFloat": self.average_float,
            "bottleneckTasks": self.bottleneck_tasks,
            "scheduleRisk": self.schedule_risk,
        }


def calculate_schedule_efficiency(
    tasks: Sequence[Task],
    dependencies: Sequence[TaskDependency],
    threshold: int = BOTTLENECK_THRESHOLD_DAYS,
    today: Optional[date] = None,
) -> ScheduleEfficiency:
    """
    Share of critical tasks, mean float and the number of near-critical
    tasks, rolled up into a low/medium/high risk rating.
    """
    scheduled = tasks_with_scheduling(tasks, dependencies, today=today)
    if not scheduled:
        return ScheduleEfficiency(critical_task_ratio=0.0, average_float=0.0, bottleneck_tasks=0, schedule_risk="low")

    count = len(scheduled)
    critical_task_ratio = sum(1 for task in scheduled if task.is_critical) / count
    average_float = sum(task.total_float for task in scheduled) / count
    bottlenecks = sum(1 for task in scheduled if 0 < task.total_float <= threshold)

    if critical_task_ratio > 0.7 or bottlenecks > count * 0.3:
        risk = "high"
    elif critical_task_ratio > 0.5 or bottlenecks > count * 0.2:
        risk = "medium"
    else:
        risk = "low"

    return ScheduleEfficiency(
        critical_task_ratio=critical_task_ratio,
        average_float=average_float,
        bottleneck_tasks=bottlenecks,
        schedule_risk=risk,
    )
