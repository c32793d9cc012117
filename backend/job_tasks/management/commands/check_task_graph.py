"""
Audit stored task graphs for dependency cycles and dangling dependency IDs.

Usage:
    python manage.py check_task_graph               # every job
    python manage.py check_task_graph --job <uuid>  # one job
"""

import uuid

from django.core.management.base import BaseCommand, CommandError

from job_tasks.dependencies import detect_circular_dependencies, find_dangling_dependencies
from job_tasks.models import Task
from job_tasks.store import TaskStore


class Command(BaseCommand):
    help = 'Report dependency cycles and dangling dependency IDs in job task graphs.'

    def add_arguments(self, parser):
        parser.add_argument('--job', type=uuid.UUID, help='Only check this job ID')

    def handle(self, *args, **options):
        store = TaskStore()
        if options['job']:
            job_ids = [options['job']]
        else:
            job_ids = Task.objects.order_by('job_id').values_list('job_id', flat=True).distinct()

        jobs_with_cycles = []
        checked = 0
        for job_id in job_ids:
            checked += 1
            tasks = store.get_tasks_for_job(job_id)

            circular = detect_circular_dependencies(tasks)
            if circular:
                jobs_with_cycles.append(str(job_id))
                path = ' -> '.join([circular[0][0]] + [dep for _, dep in circular])
                self.stderr.write(self.style.ERROR(f"Job {job_id}: cycle {path}"))

            for task_id, missing in find_dangling_dependencies(tasks).items():
                self.stdout.write(self.style.WARNING(
                    f"Job {job_id}: task {task_id} depends on unknown task(s) {', '.join(missing)}"
                ))

        if jobs_with_cycles:
            raise CommandError(f"Dependency cycles found in {len(jobs_with_cycles)} job(s)")

        self.stdout.write(self.style.SUCCESS(f"Checked {checked} job(s): no dependency cycles"))
