"""
Graph Projector for job tasks.

Turns a list of tasks into a renderable graph:

1. Nodes: one per task, placed on a fixed-width grid by ordinal position in
   the supplied list (``order_index`` is carried as display data only).

2. Edges: one per dependency, drawn prerequisite -> dependent. Dependency IDs
   that are not in the supplied list are skipped.

3. Edge hint: "pending" (animated) while the prerequisite is not done,
   "satisfied" once it is.

The projector keeps no state between calls; the caller passes the current
task set every time it changes.
"""

from typing import Optional

from .conf import get_setting
from .models import TaskStatus


EDGE_PENDING = 'pending'
EDGE_SATISFIED = 'satisfied'


def _isoformat(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def node_position(index: int, columns: Optional[int] = None) -> dict:
    """Grid position for the task at ordinal ``index``."""
    columns = columns or get_setting('GRAPH_COLUMNS')
    return {
        'x': get_setting('GRAPH_X_SPACING') * (index % columns),
        'y': get_setting('GRAPH_Y_SPACING') * (index // columns),
    }


def build_node(task, index: int, columns: Optional[int] = None) -> dict:
    return {
        'id': str(task.id),
        'type': 'taskNode',
        'status': task.status,
        'position': node_position(index, columns),
        'data': {
            'title': task.title,
            'description': task.description,
            'order_index': task.order_index,
            'status': task.status,
            'assigned_to': task.assigned_to,
            'started_at': _isoformat(task.started_at),
            'completed_at': _isoformat(task.completed_at),
        },
    }


def build_edges(tasks: list) -> list[dict]:
    """
    Derive dependency edges for a task list.

    Returns:
        Edges sorted by (source, target), so the result does not depend on
        the order of the input list
    """
    by_id = {str(task.id): task for task in tasks}
    edges = {}

    for task in tasks:
        target = str(task.id)
        for source in task.dependency_ids:
            source_task = by_id.get(source)
            if source_task is None:
                continue

            satisfied = source_task.status == TaskStatus.DONE
            edge_id = f"{source}-{target}"
            edges[edge_id] = {
                'id': edge_id,
                'source': source,
                'target': target,
                'state': EDGE_SATISFIED if satisfied else EDGE_PENDING,
                'animated': not satisfied,
            }

    return sorted(edges.values(), key=lambda e: (e['source'], e['target']))


def project(tasks: list, columns: Optional[int] = None) -> dict:
    """
    Project tasks into a graph of nodes and edges.

    Args:
        tasks: Tasks of one job, in display order
        columns: Grid width override (defaults to the GRAPH_COLUMNS setting)

    Returns:
        Dictionary with ``nodes`` and ``edges`` lists
    """
    tasks = list(tasks)
    return {
        'nodes': [build_node(task, index, columns) for index, task in enumerate(tasks)],
        'edges': build_edges(tasks),
    }


def summarize(tasks: list) -> dict:
    """Count tasks per status and compute the completion percentage."""
    tasks = list(tasks)
    counts = {status: 0 for status in TaskStatus.values}
    for task in tasks:
        counts[task.status] = counts.get(task.status, 0) + 1

    total = len(tasks)
    done = counts[TaskStatus.DONE]
    return {
        'total': total,
        'pending': counts[TaskStatus.PENDING],
        'in_progress': counts[TaskStatus.IN_PROGRESS],
        'done': done,
        # Halves round up
        'completion_percent': int(done * 100 / total + 0.5) if total else 0,
    }
