from rest_framework import serializers
from .models import Task, TaskStatus


class TaskSerializer(serializers.ModelSerializer):
    """Serializer for Task model."""

    class Meta:
        model = Task
        fields = [
            'id', 'job_id', 'title', 'description', 'order_index', 'status',
            'depends_on', 'assigned_to', 'started_at', 'completed_at',
            'created_at', 'updated_at',
        ]
        read_only_fields = fields


class TransitionRequestSerializer(serializers.Serializer):
    """
    Serializer for the transition endpoint request body.
    The caller's identity comes from the authenticated request, never the body.
    """
    task_id = serializers.UUIDField()
    new_status = serializers.ChoiceField(
        choices=TaskStatus.choices,
        error_messages={
            'invalid_choice': "Status must be 'pending', 'in_progress', or 'done'",
        },
    )


class TaskDependenciesSerializer(serializers.Serializer):
    """Serializer for replacing a task's dependency list."""
    depends_on = serializers.ListField(
        child=serializers.UUIDField(),
        allow_empty=True,
    )
