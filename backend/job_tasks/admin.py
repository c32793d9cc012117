from django.contrib import admin

from .models import Task


@admin.register(Task)
class TaskAdmin(admin.ModelAdmin):
    list_display = ('title', 'job_id', 'status', 'assigned_to', 'order_index')
    list_filter = ('status',)
    search_fields = ('title', 'job_id', 'assigned_to')
    # Status and dependencies change only through the engine and the store
    readonly_fields = ('status', 'depends_on', 'started_at', 'completed_at', 'created_at', 'updated_at')
