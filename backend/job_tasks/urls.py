from django.urls import path

from . import views

urlpatterns = [
    path('tasks/transition/', views.transition_task_view, name='task-transition'),
    path('tasks/<uuid:task_id>/dependencies/', views.task_dependencies_view, name='task-dependencies'),
    path('jobs/<uuid:job_id>/tasks/', views.job_tasks_view, name='job-tasks'),
    path('jobs/<uuid:job_id>/graph/', views.job_graph_view, name='job-graph'),
    path('health/', views.health_check, name='health'),
]
