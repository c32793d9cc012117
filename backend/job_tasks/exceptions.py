"""
Error kinds raised by the task store and the transition engine.

Every error carries a stable ``code`` so API clients can tell "not assigned
to you" apart from "blocked by prerequisites" without parsing messages.
"""


class TaskGraphError(Exception):
    """Base class for recoverable task graph errors."""
    code = 'task_graph_error'

    def __init__(self, message: str = ''):
        super().__init__(message or self.default_message())
        self.message = message or self.default_message()

    def default_message(self) -> str:
        return 'Task graph error'

    def details(self) -> dict:
        return {}


class TaskNotFound(TaskGraphError):
    code = 'not_found'

    def __init__(self, task_id):
        self.task_id = str(task_id)
        super().__init__(f"Task {self.task_id} not found")


class TransitionForbidden(TaskGraphError):
    code = 'forbidden'

    def __init__(self, task_id, requested_by):
        self.task_id = str(task_id)
        self.requested_by = requested_by
        super().__init__('Not assigned to this task')


class DependencyNotSatisfied(TaskGraphError):
    code = 'dependency_not_satisfied'

    def __init__(self, task_id, unsatisfied: list[str]):
        self.task_id = str(task_id)
        self.unsatisfied = list(unsatisfied)
        super().__init__('Cannot complete task: dependencies not finished')

    def details(self) -> dict:
        return {'unsatisfied': self.unsatisfied}


class InvalidTransition(TaskGraphError):
    code = 'invalid_transition'

    def __init__(self, task_id, current_status: str, requested_status: str, message: str = ''):
        self.task_id = str(task_id)
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(
            message or f"Cannot move task from '{current_status}' to '{requested_status}'"
        )

    def details(self) -> dict:
        return {
            'current_status': self.current_status,
            'requested_status': self.requested_status,
        }


class CycleDetected(TaskGraphError):
    code = 'cycle_detected'

    def __init__(self, cycle: list[str]):
        self.cycle = list(cycle)
        super().__init__('Dependencies would create a cycle: ' + ' -> '.join(self.cycle))

    def details(self) -> dict:
        return {'cycle': self.cycle}


class InvalidDependency(TaskGraphError):
    code = 'invalid_dependency'

    def __init__(self, message: str, dependency_ids: list[str]):
        self.dependency_ids = list(dependency_ids)
        super().__init__(message)

    def details(self) -> dict:
        return {'dependency_ids': self.dependency_ids}
