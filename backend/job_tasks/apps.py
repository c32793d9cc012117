from django.apps import AppConfig


class JobTasksConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'job_tasks'
    verbose_name = 'Job tasks'
