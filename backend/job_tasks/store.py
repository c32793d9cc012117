"""
Task Store backed by the Django ORM.

The transition engine reads and writes tasks only through this class. The
store owns the atomicity guarantee: ``get_task(..., for_update=True)`` locks
the task row for the surrounding transaction and ``update_task_status`` is a
conditional update that only applies while the row still holds the status the
caller read.

Dependency edits hold a lock on every task row of the job (``lock_job_tasks``,
primary key order) from the cycle check until the write, so concurrent edits
in one job always validate against each other's committed edges.
"""

import logging
from typing import Iterable, Optional

from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from .dependencies import validate_dependencies
from .exceptions import InvalidDependency, TaskNotFound
from .models import Task, TaskStatus

logger = logging.getLogger(__name__)


class TaskStore:

    def __init__(self, queryset=None):
        self.queryset = queryset if queryset is not None else Task.objects.all()

    def _all(self):
        return self.queryset.all()

    def get_task(self, task_id, for_update: bool = False) -> Optional[Task]:
        """Return the task, or None when the ID is unknown or malformed."""
        qs = self._all()
        if for_update:
            qs = qs.select_for_update()
        try:
            return qs.get(pk=task_id)
        except (Task.DoesNotExist, ValidationError, ValueError):
            return None

    def get_tasks_by_ids(self, task_ids: Iterable) -> list[Task]:
        """Return the tasks that exist among ``task_ids``; unknown IDs are skipped."""
        valid_ids = []
        field = Task._meta.pk
        for task_id in task_ids:
            try:
                valid_ids.append(field.to_python(task_id))
            except ValidationError:
                continue
        if not valid_ids:
            return []
        return list(self._all().filter(pk__in=valid_ids))

    def get_tasks_for_job(self, job_id) -> list[Task]:
        return list(self._all().filter(job_id=job_id).order_by('order_index', 'created_at'))

    def lock_job_tasks(self, job_id) -> list[Task]:
        """Lock and return every task of the job, in primary key order."""
        return list(self._all().select_for_update().filter(job_id=job_id).order_by('pk'))

    def get_dependents(self, task: Task) -> list[Task]:
        """Return the tasks of the same job whose ``depends_on`` contains ``task``."""
        task_id = str(task.pk)
        return [
            other for other in self.get_tasks_for_job(task.job_id)
            if task_id in other.dependency_ids
        ]

    def update_task_status(self, task_id, expected_status: str, fields: dict) -> Optional[Task]:
        """
        Apply ``fields`` to the task only while it still has ``expected_status``.

        Returns:
            The refreshed task, or None when the row was changed or removed
            since it was read
        """
        fields = {'updated_at': timezone.now(), **fields}
        updated = self._all().filter(pk=task_id, status=expected_status).update(**fields)
        if not updated:
            return None
        return self._all().get(pk=task_id)

    def create_task(self, job_id, title: str, description: str = '', order_index: int = 0,
                    assigned_to: Optional[str] = None, depends_on: Optional[Iterable] = None) -> Task:
        """Create a pending task, validating its dependencies against the job."""
        with transaction.atomic():
            task = Task(
                job_id=job_id,
                title=title,
                description=description,
                order_index=order_index,
                assigned_to=assigned_to,
                status=TaskStatus.PENDING,
            )
            job_tasks = self.get_tasks_for_job(job_id) + [task]
            task.depends_on = validate_dependencies(task.pk, depends_on or [], job_tasks)
            task.full_clean()
            task.save(force_insert=True)

        logger.info("Created task %s in job %s", task.pk, job_id)
        return task

    def set_dependencies(self, task_id, depends_on: Iterable) -> Task:
        """
        Replace a task's dependency list.

        Only pending tasks can have their dependencies changed; once work has
        started the prerequisites are fixed.

        Raises:
            TaskNotFound: the task does not exist
            InvalidDependency: the task is not pending, or a dependency is the
                task itself or outside the job
            CycleDetected: the new list would close a cycle
        """
        with transaction.atomic():
            found = self.get_task(task_id)
            if found is None:
                raise TaskNotFound(task_id)

            job_tasks = self.lock_job_tasks(found.job_id)
            task = next((t for t in job_tasks if t.pk == found.pk), None)
            if task is None:
                raise TaskNotFound(task_id)
            if task.status != TaskStatus.PENDING:
                raise InvalidDependency(
                    f"Dependencies of a task in status '{task.status}' cannot change",
                    task.dependency_ids,
                )

            task.depends_on = validate_dependencies(task.pk, depends_on, job_tasks)
            task.save(update_fields=['depends_on', 'updated_at'])

        logger.info("Set dependencies of task %s to %s", task.pk, task.depends_on)
        return task
