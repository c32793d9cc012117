import uuid

from django.db import models


class TaskStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    IN_PROGRESS = 'in_progress', 'In Progress'
    DONE = 'done', 'Done'


class Task(models.Model):
    """
    A single unit of field work belonging to a job.

    Attributes:
        job_id: Identifier of the owning job (jobs live outside this app)
        title: Display name of the task
        description: Optional longer display text
        order_index: Display/layout hint only, never an execution constraint
        status: One of pending, in_progress, done
        depends_on: List of task IDs (strings) that must be done first
        assigned_to: Identifier of the only user allowed to transition the task
        started_at: Set the first time the task enters in_progress
        completed_at: Set when the task reaches done
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    job_id = models.UUIDField(db_index=True)
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True, default='')
    order_index = models.IntegerField(default=0)
    status = models.CharField(
        max_length=20,
        choices=TaskStatus.choices,
        default=TaskStatus.PENDING,
    )
    depends_on = models.JSONField(default=list, blank=True)
    assigned_to = models.CharField(max_length=255, null=True, blank=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['order_index', 'created_at']

    def __str__(self):
        return f"{self.title} ({self.status})"

    @property
    def dependency_ids(self) -> list[str]:
        return [str(dep) for dep in (self.depends_on or [])]
