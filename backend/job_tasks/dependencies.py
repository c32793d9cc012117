"""
Dependency gating and cycle detection for job task graphs.

Everything here is a pure function over task objects (anything with ``id``
and ``depends_on``) or plain dictionaries, so it can be called repeatedly and
from concurrent requests without side effects.

Gating rule:
    A task may be completed only when every ID in its ``depends_on`` list
    resolves to a task whose status is ``done``. An ID that does not resolve
    counts as unsatisfied (fail closed).

Cycle rule:
    The tasks of a job and their ``depends_on`` edges must form a DAG.
    Dependency lists are checked with a depth-first search before they are
    written.
"""

from typing import Iterable, Optional

from .exceptions import CycleDetected, InvalidDependency
from .models import TaskStatus


def _dependency_ids(task) -> list[str]:
    if isinstance(task, dict):
        depends_on = task.get('depends_on') or []
    else:
        depends_on = getattr(task, 'depends_on', None) or []
    return [str(dep) for dep in depends_on]


def unsatisfied_dependencies(task, dependency_statuses: dict[str, str]) -> list[str]:
    """
    List the dependencies that block a task from being completed.

    Args:
        task: Task being evaluated
        dependency_statuses: Current status of each known dependency, keyed by task ID

    Returns:
        Dependency IDs that are not done or not known, in ``depends_on`` order
    """
    return [
        dep for dep in _dependency_ids(task)
        if dependency_statuses.get(dep) != TaskStatus.DONE
    ]


def can_complete(task, dependency_statuses: dict[str, str]) -> bool:
    """Return True when the task has no dependencies or all of them are done."""
    return not unsatisfied_dependencies(task, dependency_statuses)


def build_graph(tasks: Iterable) -> dict[str, list[str]]:
    """Build an adjacency list of task ID -> dependency IDs."""
    graph = {}
    for task in tasks:
        task_id = task.get('id') if isinstance(task, dict) else getattr(task, 'id', None)
        if task_id is not None:
            graph[str(task_id)] = _dependency_ids(task)
    return graph


def find_cycle(graph: dict[str, list[str]], start: Optional[Iterable[str]] = None) -> Optional[list[str]]:
    """
    Find one dependency cycle in the graph.

    Dependency IDs that are not keys of the graph are ignored.

    Args:
        graph: Adjacency list of task ID -> dependency IDs
        start: Only search from these task IDs (defaults to every task)

    Returns:
        The cycle as a path that starts and ends on the same task ID,
        or None when the graph is acyclic
    """
    visited = set()

    def visit(node, rec_stack, path):
        visited.add(node)
        rec_stack.add(node)
        path.append(node)

        for neighbor in graph.get(node, []):
            if neighbor not in graph:
                continue
            if neighbor not in visited:
                cycle = visit(neighbor, rec_stack, path)
                if cycle:
                    return cycle
            elif neighbor in rec_stack:
                cycle_start = path.index(neighbor)
                return path[cycle_start:] + [neighbor]

        path.pop()
        rec_stack.remove(node)
        return None

    for node in sorted(graph) if start is None else start:
        if node in graph and node not in visited:
            cycle = visit(node, set(), [])
            if cycle:
                return cycle
    return None


def detect_circular_dependencies(tasks: Iterable) -> list[tuple[str, str]]:
    """
    Detect circular dependencies in a task list.

    Returns:
        Edges (task ID, dependency ID) that make up the first cycle found
    """
    cycle = find_cycle(build_graph(tasks))
    if not cycle:
        return []
    return list(zip(cycle, cycle[1:]))


def find_dangling_dependencies(tasks: Iterable) -> dict[str, list[str]]:
    """Map task ID -> dependency IDs that do not resolve within the task list."""
    graph = build_graph(tasks)
    dangling = {}
    for task_id, deps in graph.items():
        missing = [dep for dep in deps if dep not in graph]
        if missing:
            dangling[task_id] = missing
    return dangling


def validate_dependencies(task_id, depends_on: Iterable, job_tasks: Iterable) -> list[str]:
    """
    Validate a new dependency list for a task before it is written.

    Args:
        task_id: ID of the task whose dependencies change
        depends_on: Proposed dependency IDs
        job_tasks: Every task of the same job, including the task itself

    Returns:
        The normalized dependency list (string IDs, duplicates removed, order kept)

    Raises:
        InvalidDependency: a dependency is the task itself or not a task of the job
        CycleDetected: the new edges would close a cycle
    """
    task_id = str(task_id)
    normalized = list(dict.fromkeys(str(dep) for dep in depends_on))

    if task_id in normalized:
        raise InvalidDependency('A task cannot depend on itself', [task_id])

    graph = build_graph(job_tasks)
    unknown = [dep for dep in normalized if dep not in graph]
    if unknown:
        raise InvalidDependency('Dependencies must be tasks of the same job', unknown)

    # Any cycle created by the new edges passes through the task itself
    graph[task_id] = normalized
    cycle = find_cycle(graph, start=[task_id])
    if cycle:
        raise CycleDetected(cycle)

    return normalized
