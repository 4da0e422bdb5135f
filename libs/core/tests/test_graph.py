import random

from libs.core import graph, models


def _task(task_id, deps=()):
    return models.Task(
        id=task_id, description=task_id, priority=models.Priority.medium, dependencies=list(deps)
    )


def _statuses(tasks):
    return {task.id: task.status for task in tasks}


def test_acyclic_graph_statuses():
    tasks = [_task("a"), _task("b", ["a"]), _task("c", ["b"])]
    report = graph.detect_cycles(tasks)
    assert not report.has_cycle
    assert report.cycles == []
    assert _statuses(graph.resolve_statuses(tasks, report)) == {
        "a": models.TaskStatus.ready,
        "b": models.TaskStatus.blocked,
        "c": models.TaskStatus.blocked,
    }


def test_cycle_with_downstream_dependent():
    tasks = [_task("a", ["c"]), _task("b", ["a"]), _task("c", ["b"]), _task("d", ["a"])]
    report = graph.detect_cycles(tasks)
    assert report.has_cycle
    assert report.cycles == [["a", "c", "b", "a"]]
    assert report.error_task_ids == {"a", "b", "c"}
    assert _statuses(graph.resolve_statuses(tasks, report)) == {
        "a": models.TaskStatus.error,
        "b": models.TaskStatus.error,
        "c": models.TaskStatus.error,
        "d": models.TaskStatus.blocked,
    }


def test_mutual_dependency_between_x_and_y():
    tasks = [_task("x", ["y"]), _task("y", ["x"])]
    report = graph.detect_cycles(tasks)
    assert report.has_cycle
    assert report.cycles == [["x", "y", "x"]]
    assert _statuses(graph.resolve_statuses(tasks, report)) == {
        "x": models.TaskStatus.error,
        "y": models.TaskStatus.error,
    }


def test_self_dependency_is_a_cycle():
    report = graph.detect_cycles([_task("a", ["a"])])
    assert report.cycles == [["a", "a"]]
    assert report.error_task_ids == {"a"}


def test_two_independent_cycles():
    tasks = [_task("a", ["b"]), _task("b", ["a"]), _task("x", ["y"]), _task("y", ["x"])]
    report = graph.detect_cycles(tasks)
    assert report.cycles == [["a", "b", "a"], ["x", "y", "x"]]


def test_node_outside_cycle_is_not_marked():
    tasks = [_task("a", ["b"]), _task("b", ["c"]), _task("c", ["b"])]
    report = graph.detect_cycles(tasks)
    assert report.error_task_ids == {"b", "c"}
    assert _statuses(graph.resolve_statuses(tasks, report))["a"] == models.TaskStatus.blocked


def test_unknown_dependency_is_a_leaf():
    tasks = [_task("a", ["ghost"])]
    report = graph.detect_cycles(tasks)
    assert not report.has_cycle
    status = graph.resolve_status(tasks[0], {"a"}, report)
    assert status == models.TaskStatus.ready


def test_deep_chain_does_not_recurse():
    size = 5000
    tasks = [_task("n0")] + [_task(f"n{index}", [f"n{index - 1}"]) for index in range(1, size)]
    tasks.append(_task("n0-loop", [f"n{size - 1}"]))
    tasks[0] = _task("n0", ["n0-loop"])
    report = graph.detect_cycles(tasks)
    assert report.has_cycle
    assert len(report.error_task_ids) == size + 1


def _random_tasks(rng):
    ids = [f"t{index}" for index in range(rng.randint(1, 15))]
    return [
        _task(task_id, rng.sample(ids, rng.randint(0, min(3, len(ids)))))
        for task_id in ids
    ]


def test_random_graphs_reported_cycles_are_real_and_marked():
    rng = random.Random(42)
    for _ in range(200):
        tasks = _random_tasks(rng)
        edges = {(task.id, dep) for task in tasks for dep in task.dependencies}
        report = graph.detect_cycles(tasks)
        assert report.has_cycle == bool(report.cycles)
        for cycle in report.cycles:
            assert cycle[0] == cycle[-1]
            assert len(set(cycle[:-1])) == len(cycle) - 1
            for source, target in zip(cycle, cycle[1:]):
                assert (source, target) in edges
        members = {node for cycle in report.cycles for node in cycle}
        assert members == report.error_task_ids
        resolved = graph.resolve_statuses(tasks, report)
        for task in resolved:
            assert (task.status == models.TaskStatus.error) == (task.id in members)


def test_random_graphs_without_reported_cycles_are_acyclic():
    rng = random.Random(7)
    for _ in range(200):
        tasks = _random_tasks(rng)
        report = graph.detect_cycles(tasks)
        if report.has_cycle:
            continue
        adjacency = graph.build_adjacency(tasks)
        remaining = {node: len(deps) for node, deps in adjacency.items()}
        dependents = {node: [] for node in adjacency}
        for node, deps in adjacency.items():
            for dep in deps:
                dependents[dep].append(node)
        queue = [node for node, count in remaining.items() if count == 0]
        ordered = 0
        while queue:
            node = queue.pop()
            ordered += 1
            for dependent in dependents[node]:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    queue.append(dependent)
        assert ordered == len(adjacency)


def test_random_graphs_non_error_statuses_follow_dependencies():
    rng = random.Random(99)
    for _ in range(200):
        tasks = _random_tasks(rng)
        report = graph.detect_cycles(tasks)
        for task in graph.resolve_statuses(tasks, report):
            if task.status == models.TaskStatus.error:
                continue
            expected = models.TaskStatus.blocked if task.dependencies else models.TaskStatus.ready
            assert task.status == expected
