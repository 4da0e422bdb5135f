from __future__ import annotations

from typing import Dict, Iterator, List, Sequence, Set, Tuple

from .models import CycleReport, Task, TaskStatus


def build_adjacency(tasks: Sequence[Task]) -> Dict[str, List[str]]:
    graph: Dict[str, List[str]] = {}
    for task in tasks:
        deps = graph.setdefault(task.id, [])
        for dep in task.dependencies:
            if dep not in deps:
                deps.append(dep)
    return graph


def detect_cycles(tasks: Sequence[Task]) -> CycleReport:
    """Find cycles with a depth-first walk from every unvisited task.

    Each back edge closes one cycle, reported as the path suffix starting at the
    revisited task with that task appended again. Cycles are reported once per
    discovering walk; the same node set reached from another root is not merged.
    Neighbours are explored in declared dependency order, so output is stable
    for a given input order.
    """
    graph = build_adjacency(tasks)
    visited: Set[str] = set()
    visiting: Set[str] = set()
    cycles: List[List[str]] = []
    error_task_ids: Set[str] = set()

    for root in graph:
        if root in visited:
            continue
        path: List[str] = [root]
        position: Dict[str, int] = {root: 0}
        visiting.add(root)
        stack: List[Tuple[str, Iterator[str]]] = [(root, iter(graph[root]))]
        while stack:
            node, neighbours = stack[-1]
            descended = False
            for neighbour in neighbours:
                if neighbour in visiting:
                    cycle = path[position[neighbour] :] + [neighbour]
                    cycles.append(cycle)
                    error_task_ids.update(cycle)
                    continue
                if neighbour in visited:
                    continue
                visiting.add(neighbour)
                position[neighbour] = len(path)
                path.append(neighbour)
                stack.append((neighbour, iter(graph.get(neighbour, ()))))
                descended = True
                break
            if descended:
                continue
            stack.pop()
            path.pop()
            del position[node]
            visiting.discard(node)
            visited.add(node)

    return CycleReport(has_cycle=bool(cycles), cycles=cycles, error_task_ids=error_task_ids)


def mark_cyclic_tasks(tasks: Sequence[Task], report: CycleReport) -> List[Task]:
    return [
        task.model_copy(update={"status": TaskStatus.error})
        if task.id in report.error_task_ids
        else task
        for task in tasks
    ]


def resolve_status(task: Task, all_task_ids: Set[str], report: CycleReport) -> TaskStatus:
    if task.id in report.error_task_ids:
        return TaskStatus.error
    if not task.dependencies:
        return TaskStatus.ready
    if all(dep in all_task_ids for dep in task.dependencies):
        return TaskStatus.blocked
    # Only reachable if a dangling reference slipped past sanitization.
    return TaskStatus.ready


def resolve_statuses(tasks: Sequence[Task], report: CycleReport) -> List[Task]:
    all_task_ids = {task.id for task in tasks}
    resolved: List[Task] = []
    for task in mark_cyclic_tasks(tasks, report):
        if task.status == TaskStatus.error:
            resolved.append(task)
            continue
        status = resolve_status(task, all_task_ids, report)
        resolved.append(task.model_copy(update={"status": status}))
    return resolved
