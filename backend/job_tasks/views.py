import logging

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny, IsAdminUser
from rest_framework.response import Response

from .exceptions import (
    CycleDetected,
    DependencyNotSatisfied,
    InvalidDependency,
    InvalidTransition,
    TaskGraphError,
    TaskNotFound,
    TransitionForbidden,
)
from .graph import project, summarize
from .serializers import TaskDependenciesSerializer, TaskSerializer, TransitionRequestSerializer
from .store import TaskStore
from .transitions import transition_task

logger = logging.getLogger(__name__)


ERROR_STATUS = {
    TaskNotFound: status.HTTP_404_NOT_FOUND,
    TransitionForbidden: status.HTTP_403_FORBIDDEN,
    DependencyNotSatisfied: status.HTTP_409_CONFLICT,
    InvalidTransition: status.HTTP_409_CONFLICT,
    CycleDetected: status.HTTP_400_BAD_REQUEST,
    InvalidDependency: status.HTTP_400_BAD_REQUEST,
}


def error_response(error: TaskGraphError) -> Response:
    return Response(
        {'error': error.message, 'code': error.code, 'details': error.details()},
        status=ERROR_STATUS.get(type(error), status.HTTP_400_BAD_REQUEST)
    )


def requester_id(request) -> str:
    return str(request.user.pk)


@api_view(['POST'])
def transition_task_view(request):
    """
    Change the status of a task assigned to the authenticated user.

    POST /api/tasks/transition/

    Request body:
    {
        "task_id": "6f1c...",
        "new_status": "done"  // pending, in_progress, done
    }

    Response:
    {
        "success": true,
        "task": {...updated task...}
    }

    Errors carry a code so clients can tell them apart:
    not_found (404), forbidden (403), invalid_transition (409),
    dependency_not_satisfied (409, details.unsatisfied lists blocking task IDs)
    """
    serializer = TransitionRequestSerializer(data=request.data)

    if not serializer.is_valid():
        return Response(
            {'error': 'Invalid input', 'details': serializer.errors},
            status=status.HTTP_400_BAD_REQUEST
        )

    validated_data = serializer.validated_data

    try:
        task = transition_task(
            task_id=validated_data['task_id'],
            requested_by=requester_id(request),
            new_status=validated_data['new_status'],
        )
        return Response(
            {'success': True, 'task': TaskSerializer(task).data},
            status=status.HTTP_200_OK
        )

    except TaskGraphError as e:
        return error_response(e)
    except Exception:
        logger.exception("Error transitioning task %s", validated_data['task_id'])
        return Response(
            {'error': 'Processing error'},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )


@api_view(['PUT'])
@permission_classes([IsAdminUser])
def task_dependencies_view(request, task_id):
    """
    Replace the dependency list of a task.

    PUT /api/tasks/<task_id>/dependencies/

    Request body:
    {
        "depends_on": ["0b7e...", "91aa..."]
    }

    Staff only; assignees cannot edit the prerequisites that gate them.
    Only pending tasks can change (invalid_dependency, 400). Dependencies
    must be other tasks of the same job and must not close a cycle
    (invalid_dependency / cycle_detected, both 400).
    """
    serializer = TaskDependenciesSerializer(data=request.data)

    if not serializer.is_valid():
        return Response(
            {'error': 'Invalid input', 'details': serializer.errors},
            status=status.HTTP_400_BAD_REQUEST
        )

    try:
        task = TaskStore().set_dependencies(task_id, serializer.validated_data['depends_on'])
        return Response(TaskSerializer(task).data, status=status.HTTP_200_OK)

    except TaskGraphError as e:
        return error_response(e)


@api_view(['GET'])
def job_tasks_view(request, job_id):
    """
    List the tasks of a job ordered by order_index.

    GET /api/jobs/<job_id>/tasks/
    """
    tasks = TaskStore().get_tasks_for_job(job_id)
    return Response({
        'job_id': str(job_id),
        'tasks': TaskSerializer(tasks, many=True).data,
        'total_tasks': len(tasks),
    })


@api_view(['GET'])
def job_graph_view(request, job_id):
    """
    Return the dependency graph of a job for visualization.

    GET /api/jobs/<job_id>/graph/

    Response:
    {
        "job_id": "...",
        "nodes": [{"id", "type", "status", "position": {"x", "y"}, "data": {...}}, ...],
        "edges": [{"id", "source", "target", "state": "pending"|"satisfied", "animated"}, ...],
        "stats": {"total", "pending", "in_progress", "done", "completion_percent"}
    }
    """
    tasks = TaskStore().get_tasks_for_job(job_id)
    graph = project(tasks)
    return Response({
        'job_id': str(job_id),
        'nodes': graph['nodes'],
        'edges': graph['edges'],
        'stats': summarize(tasks),
    })


@api_view(['GET'])
@permission_classes([AllowAny])
def health_check(request):
    """Simple health check endpoint."""
    return Response({'status': 'ok', 'service': 'job-task-graph'})
