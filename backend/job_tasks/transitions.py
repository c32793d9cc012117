"""
Transition Engine for job tasks.

State machine per task:
    pending -> in_progress -> done (terminal)

Allowed moves:
    pending     -> in_progress, done
    in_progress -> in_progress (idempotent restart), done

A move to ``done`` is gated on every dependency being ``done`` at the moment
of the attempt. Readiness is never cached: dependency statuses are re-read
from the store inside the same transaction that writes the new status.

Checks run in this order and each failure is a distinct error kind:
    1. the task exists                 -> TaskNotFound
    2. the caller is the assignee      -> TransitionForbidden
    3. the move is allowed             -> InvalidTransition
    4. dependencies are done (done)    -> DependencyNotSatisfied
"""

import logging
from datetime import datetime
from typing import Optional

from django.db import transaction
from django.utils import timezone

from .dependencies import unsatisfied_dependencies
from .exceptions import (
    DependencyNotSatisfied,
    InvalidTransition,
    TaskGraphError,
    TaskNotFound,
    TransitionForbidden,
)
from .models import Task, TaskStatus
from .notifications import SignalNotifier, TaskCompletedEvent
from .store import TaskStore

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS = {
    TaskStatus.PENDING: {TaskStatus.IN_PROGRESS, TaskStatus.DONE},
    TaskStatus.IN_PROGRESS: {TaskStatus.IN_PROGRESS, TaskStatus.DONE},
    TaskStatus.DONE: set(),
}


def is_allowed(current_status: str, new_status: str) -> bool:
    return new_status in ALLOWED_TRANSITIONS.get(current_status, set())


class TransitionEngine:
    """Apply status changes to tasks, enforcing ownership and dependency gating."""

    def __init__(self, store: Optional[TaskStore] = None, notifier=None):
        self.store = store or TaskStore()
        self.notifier = notifier or SignalNotifier()

    def transition(self, task_id, requested_by: str, new_status: str,
                   now: Optional[datetime] = None) -> Task:
        """
        Move a task to ``new_status`` on behalf of ``requested_by``.

        Args:
            task_id: ID of the task to change
            requested_by: Identity of the caller, compared to ``assigned_to``
            new_status: Requested status
            now: Timestamp to stamp (defaults to the current time)

        Returns:
            The updated task

        Raises:
            TaskNotFound, TransitionForbidden, InvalidTransition,
            DependencyNotSatisfied
        """
        if now is None:
            now = timezone.now()

        try:
            with transaction.atomic():
                task = self._apply(task_id, requested_by, new_status, now)
        except TaskGraphError as e:
            logger.info(
                "Rejected transition of task %s to %s by %s: %s",
                task_id, new_status, requested_by, e.code,
            )
            raise

        logger.info("Task %s moved to %s by %s", task.pk, new_status, requested_by)
        return task

    def _apply(self, task_id, requested_by, new_status, now) -> Task:
        task = self.store.get_task(task_id, for_update=True)
        if task is None:
            raise TaskNotFound(task_id)

        if task.assigned_to is None or str(requested_by) != task.assigned_to:
            raise TransitionForbidden(task.pk, requested_by)

        if not is_allowed(task.status, new_status):
            raise InvalidTransition(task.pk, task.status, new_status)

        if new_status == TaskStatus.DONE:
            unsatisfied = self.check_dependencies(task)
            if unsatisfied:
                raise DependencyNotSatisfied(task.pk, unsatisfied)

        fields = {'status': new_status}
        if new_status == TaskStatus.IN_PROGRESS and task.started_at is None:
            fields['started_at'] = now
        if new_status == TaskStatus.DONE:
            fields['completed_at'] = now

        updated = self.store.update_task_status(task.pk, task.status, fields)
        if updated is None:
            raise InvalidTransition(
                task.pk, task.status, new_status,
                message='Task was modified concurrently; re-read and retry',
            )

        if new_status == TaskStatus.DONE:
            self._schedule_completion_notice(updated)

        return updated

    def check_dependencies(self, task: Task) -> list[str]:
        """Re-read the task's dependencies and return the IDs that block completion."""
        if not task.dependency_ids:
            return []

        # Dependencies outside the task's job never count as resolved
        statuses = {
            str(dep.pk): dep.status
            for dep in self.store.get_tasks_by_ids(task.dependency_ids)
            if dep.job_id == task.job_id
        }
        return unsatisfied_dependencies(task, statuses)

    def _schedule_completion_notice(self, task: Task):
        dependents = self.store.get_dependents(task)
        event = TaskCompletedEvent(
            job_id=str(task.job_id),
            completed_task_id=str(task.pk),
            newly_checkable_dependent_ids=tuple(str(dep.pk) for dep in dependents),
        )
        logger.info(
            "Task %s completed; %d dependent task(s) to re-check",
            task.pk, len(event.newly_checkable_dependent_ids),
        )
        transaction.on_commit(lambda: self.notifier.notify(event))


def transition_task(task_id, requested_by: str, new_status: str,
                    now: Optional[datetime] = None) -> Task:
    """Run a transition with the default store and notifier."""
    return TransitionEngine().transition(task_id, requested_by, new_status, now)
