import itertools
import uuid
from datetime import datetime, timedelta, timezone as dt_timezone
from io import StringIO
from unittest import mock

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import connection, transaction
from django.test import SimpleTestCase, TestCase, override_settings, skipUnlessDBFeature
from django.test.utils import CaptureQueriesContext
from rest_framework import status
from rest_framework.test import APITestCase

from .dependencies import (
    can_complete,
    detect_circular_dependencies,
    find_cycle,
    find_dangling_dependencies,
    unsatisfied_dependencies,
    validate_dependencies,
)
from .exceptions import (
    CycleDetected,
    DependencyNotSatisfied,
    InvalidDependency,
    InvalidTransition,
    TaskNotFound,
    TransitionForbidden,
)
from .graph import EDGE_PENDING, EDGE_SATISFIED, project, summarize
from .models import Task, TaskStatus
from .notifications import SignalNotifier, TaskCompletedEvent, task_completed
from .store import TaskStore
from .transitions import TransitionEngine, is_allowed


OWNER = 'worker-1'
NOW = datetime(2025, 11, 26, 9, 0, tzinfo=dt_timezone.utc)


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def notify(self, event):
        self.events.append(event)


class DependencyValidatorTests(SimpleTestCase):
    """Tests for the pure dependency gating functions."""

    def test_no_dependencies_can_complete(self):
        """A task without dependencies can always be completed."""
        task = {'id': 'a', 'depends_on': []}

        self.assertTrue(can_complete(task, {}))
        self.assertEqual(unsatisfied_dependencies(task, {}), [])

    def test_all_dependencies_done(self):
        task = {'id': 'c', 'depends_on': ['a', 'b']}
        statuses = {'a': 'done', 'b': 'done'}

        self.assertTrue(can_complete(task, statuses))

    def test_unfinished_dependency_blocks(self):
        """Any dependency that is not done blocks completion."""
        task = {'id': 'c', 'depends_on': ['a', 'b']}
        statuses = {'a': 'done', 'b': 'in_progress'}

        self.assertFalse(can_complete(task, statuses))
        self.assertEqual(unsatisfied_dependencies(task, statuses), ['b'])

    def test_missing_dependency_fails_closed(self):
        """A dependency that cannot be resolved counts as unsatisfied."""
        task = {'id': 'c', 'depends_on': ['a', 'ghost']}
        statuses = {'a': 'done'}

        self.assertFalse(can_complete(task, statuses))
        self.assertEqual(unsatisfied_dependencies(task, statuses), ['ghost'])

    def test_unsatisfied_keeps_declaration_order(self):
        task = {'id': 'd', 'depends_on': ['c', 'a', 'b']}
        statuses = {'a': 'pending', 'b': 'done', 'c': 'pending'}

        self.assertEqual(unsatisfied_dependencies(task, statuses), ['c', 'a'])

    def test_accepts_model_instances(self):
        dep_id = uuid.uuid4()
        task = Task(job_id=uuid.uuid4(), title='T', depends_on=[str(dep_id)])

        self.assertFalse(can_complete(task, {}))
        self.assertTrue(can_complete(task, {str(dep_id): TaskStatus.DONE}))


class CircularDependencyTests(SimpleTestCase):
    """Tests for circular dependency detection."""

    def test_no_circular_dependencies(self):
        """Should return empty list when no circular dependencies exist."""
        tasks = [
            {'id': 1, 'depends_on': []},
            {'id': 2, 'depends_on': [1]},
            {'id': 3, 'depends_on': [2]},
        ]
        circular = detect_circular_dependencies(tasks)

        self.assertEqual(len(circular), 0)

    def test_simple_circular_dependency(self):
        """Should detect simple A -> B -> A cycle."""
        tasks = [
            {'id': 1, 'depends_on': [2]},
            {'id': 2, 'depends_on': [1]},
        ]
        circular = detect_circular_dependencies(tasks)

        self.assertEqual(set(circular), {('1', '2'), ('2', '1')})

    def test_complex_circular_dependency(self):
        """Should detect longer cycles (A -> B -> C -> A)."""
        tasks = [
            {'id': 1, 'depends_on': [3]},
            {'id': 2, 'depends_on': [1]},
            {'id': 3, 'depends_on': [2]},
        ]
        circular = detect_circular_dependencies(tasks)

        self.assertEqual(len(circular), 3)

    def test_dangling_ids_ignored(self):
        """IDs outside the task list do not create cycles."""
        graph = {'a': ['ghost'], 'b': ['a']}

        self.assertIsNone(find_cycle(graph))
        self.assertEqual(
            find_dangling_dependencies([{'id': 'a', 'depends_on': ['ghost']}, {'id': 'b', 'depends_on': ['a']}]),
            {'a': ['ghost']}
        )

    def test_cycle_path_returns_to_start(self):
        cycle = find_cycle({'a': ['b'], 'b': ['c'], 'c': ['a']})

        self.assertEqual(cycle[0], cycle[-1])
        self.assertEqual(len(cycle), 4)


class ValidateDependenciesTests(SimpleTestCase):
    """Tests for write-time dependency validation."""

    def setUp(self):
        self.tasks = [
            {'id': 'a', 'depends_on': []},
            {'id': 'b', 'depends_on': ['a']},
            {'id': 'c', 'depends_on': ['b']},
        ]

    def test_valid_dependencies_normalized(self):
        result = validate_dependencies('c', ['a', 'b', 'a'], self.tasks)

        self.assertEqual(result, ['a', 'b'])

    def test_self_dependency_rejected(self):
        with self.assertRaises(InvalidDependency):
            validate_dependencies('a', ['a'], self.tasks)

    def test_unknown_dependency_rejected(self):
        with self.assertRaises(InvalidDependency) as ctx:
            validate_dependencies('c', ['zzz'], self.tasks)

        self.assertEqual(ctx.exception.dependency_ids, ['zzz'])

    def test_cycle_rejected(self):
        """a -> c would close a -> c -> b -> a."""
        with self.assertRaises(CycleDetected) as ctx:
            validate_dependencies('a', ['c'], self.tasks)

        self.assertEqual(ctx.exception.cycle[0], 'a')
        self.assertEqual(ctx.exception.cycle[-1], 'a')
        self.assertIn('c', ctx.exception.cycle)


class TaskStoreTests(TestCase):
    """Tests for the ORM-backed task store."""

    def setUp(self):
        self.store = TaskStore()
        self.job_id = uuid.uuid4()
        self.a = self.store.create_task(self.job_id, 'A', order_index=2, assigned_to=OWNER)
        self.b = self.store.create_task(self.job_id, 'B', order_index=1, assigned_to=OWNER,
                                        depends_on=[self.a.pk])

    def test_create_task_defaults(self):
        self.assertEqual(self.a.status, TaskStatus.PENDING)
        self.assertIsNone(self.a.started_at)
        self.assertIsNone(self.a.completed_at)
        self.assertEqual(self.b.depends_on, [str(self.a.pk)])

    def test_create_task_rejects_foreign_dependency(self):
        other = self.store.create_task(uuid.uuid4(), 'Other job task')

        with self.assertRaises(InvalidDependency):
            self.store.create_task(self.job_id, 'C', depends_on=[other.pk])

    def test_get_task_unknown_and_malformed(self):
        self.assertIsNone(self.store.get_task(uuid.uuid4()))
        self.assertIsNone(self.store.get_task('not-a-uuid'))

    def test_get_tasks_by_ids_skips_unknown(self):
        tasks = self.store.get_tasks_by_ids([str(self.a.pk), str(uuid.uuid4()), 'garbage'])

        self.assertEqual([t.pk for t in tasks], [self.a.pk])

    def test_get_tasks_for_job_ordered_by_order_index(self):
        self.store.create_task(uuid.uuid4(), 'Elsewhere')
        tasks = self.store.get_tasks_for_job(self.job_id)

        self.assertEqual([t.title for t in tasks], ['B', 'A'])

    def test_get_dependents(self):
        dependents = self.store.get_dependents(self.a)

        self.assertEqual([t.pk for t in dependents], [self.b.pk])

    def test_conditional_update_applies_on_expected_status(self):
        updated = self.store.update_task_status(self.a.pk, TaskStatus.PENDING, {'status': TaskStatus.IN_PROGRESS})

        self.assertEqual(updated.status, TaskStatus.IN_PROGRESS)

    def test_conditional_update_rejects_stale_status(self):
        """A write based on a stale read must not apply."""
        Task.objects.filter(pk=self.a.pk).update(status=TaskStatus.DONE)
        updated = self.store.update_task_status(self.a.pk, TaskStatus.PENDING, {'status': TaskStatus.IN_PROGRESS})

        self.assertIsNone(updated)
        self.assertEqual(Task.objects.get(pk=self.a.pk).status, TaskStatus.DONE)

    def test_set_dependencies_rejects_cycle(self):
        with self.assertRaises(CycleDetected):
            self.store.set_dependencies(self.a.pk, [self.b.pk])

        self.assertEqual(Task.objects.get(pk=self.a.pk).depends_on, [])

    def test_set_dependencies_unknown_task(self):
        with self.assertRaises(TaskNotFound):
            self.store.set_dependencies(uuid.uuid4(), [])

    def test_set_dependencies_replaces_list(self):
        task = self.store.set_dependencies(self.b.pk, [])

        self.assertEqual(task.depends_on, [])
        self.assertEqual(Task.objects.get(pk=self.b.pk).depends_on, [])

    def test_set_dependencies_requires_pending_task(self):
        Task.objects.filter(pk=self.b.pk).update(status=TaskStatus.IN_PROGRESS)

        with self.assertRaises(InvalidDependency):
            self.store.set_dependencies(self.b.pk, [])

        self.assertEqual(Task.objects.get(pk=self.b.pk).depends_on, [str(self.a.pk)])

    def test_set_dependencies_locks_whole_job(self):
        """Validation runs against every task of the job, read under lock."""
        with mock.patch.object(TaskStore, 'lock_job_tasks', wraps=self.store.lock_job_tasks) as lock:
            self.store.set_dependencies(self.b.pk, [])

        lock.assert_called_once_with(self.job_id)

    def test_lock_job_tasks_returns_job_in_pk_order(self):
        self.store.create_task(uuid.uuid4(), 'Elsewhere')

        with transaction.atomic():
            tasks = self.store.lock_job_tasks(self.job_id)

        self.assertEqual([t.pk for t in tasks], sorted([self.a.pk, self.b.pk]))

    @skipUnlessDBFeature('has_select_for_update')
    def test_set_dependencies_selects_job_rows_for_update(self):
        with CaptureQueriesContext(connection) as ctx:
            self.store.set_dependencies(self.b.pk, [])

        locking = [q['sql'] for q in ctx.captured_queries if 'FOR UPDATE' in q['sql']]
        self.assertTrue(any('job_id' in sql for sql in locking))


class TransitionEngineTests(TestCase):
    """Tests for the transition state machine and dependency gating."""

    def setUp(self):
        self.store = TaskStore()
        self.notifier = RecordingNotifier()
        self.engine = TransitionEngine(store=self.store, notifier=self.notifier)
        self.job_id = uuid.uuid4()
        self.a = self.store.create_task(self.job_id, 'A', order_index=0, assigned_to=OWNER)
        self.b = self.store.create_task(self.job_id, 'B', order_index=1, assigned_to=OWNER,
                                        depends_on=[self.a.pk])
        self.c = self.store.create_task(self.job_id, 'C', order_index=2, assigned_to=OWNER,
                                        depends_on=[self.a.pk, self.b.pk])

    def test_dependency_walkthrough(self):
        """A, then B, then C complete in order; nothing completes early."""
        with self.assertRaises(DependencyNotSatisfied) as ctx:
            self.engine.transition(self.b.pk, OWNER, TaskStatus.DONE, now=NOW)
        self.assertEqual(ctx.exception.unsatisfied, [str(self.a.pk)])

        a = self.engine.transition(self.a.pk, OWNER, TaskStatus.IN_PROGRESS, now=NOW)
        self.assertEqual(a.started_at, NOW)

        a = self.engine.transition(self.a.pk, OWNER, TaskStatus.DONE, now=NOW + timedelta(hours=1))
        self.assertEqual(a.status, TaskStatus.DONE)
        self.assertEqual(a.completed_at, NOW + timedelta(hours=1))

        b = self.engine.transition(self.b.pk, OWNER, TaskStatus.DONE, now=NOW)
        self.assertEqual(b.status, TaskStatus.DONE)

        # C reads B's live status rather than any cached readiness
        c = self.engine.transition(self.c.pk, OWNER, TaskStatus.DONE, now=NOW)
        self.assertEqual(c.status, TaskStatus.DONE)

        graph = project(self.store.get_tasks_for_job(self.job_id))
        self.assertEqual(len(graph['edges']), 3)
        self.assertTrue(all(e['state'] == EDGE_SATISFIED for e in graph['edges']))

    def test_no_premature_completion(self):
        """Repeated attempts never complete a blocked task."""
        for _ in range(5):
            with self.assertRaises(DependencyNotSatisfied):
                self.engine.transition(self.c.pk, OWNER, TaskStatus.DONE)

        c = Task.objects.get(pk=self.c.pk)
        self.assertEqual(c.status, TaskStatus.PENDING)
        self.assertIsNone(c.completed_at)

    def test_partial_dependencies_listed(self):
        self.engine.transition(self.a.pk, OWNER, TaskStatus.DONE)

        with self.assertRaises(DependencyNotSatisfied) as ctx:
            self.engine.transition(self.c.pk, OWNER, TaskStatus.DONE)

        self.assertEqual(ctx.exception.unsatisfied, [str(self.b.pk)])

    def test_gating_under_any_completion_order(self):
        """Completion succeeds iff every dependency is done, for every attempt order."""
        d = self.store.create_task(self.job_id, 'D', order_index=3, assigned_to=OWNER)
        tasks = [self.a, self.b, self.c, d]

        for order in itertools.permutations(tasks):
            with self.subTest(order=[t.title for t in order]):
                Task.objects.filter(job_id=self.job_id).update(
                    status=TaskStatus.PENDING, started_at=None, completed_at=None
                )
                done = set()
                for task in order:
                    expected = all(dep in done for dep in task.dependency_ids)
                    try:
                        self.engine.transition(task.pk, OWNER, TaskStatus.DONE)
                        succeeded = True
                    except DependencyNotSatisfied:
                        succeeded = False
                    self.assertEqual(succeeded, expected)
                    if succeeded:
                        done.add(str(task.pk))

    def test_start_timestamp_set_once(self):
        """A second in_progress request keeps the original started_at."""
        first = self.engine.transition(self.a.pk, OWNER, TaskStatus.IN_PROGRESS, now=NOW)
        second = self.engine.transition(self.a.pk, OWNER, TaskStatus.IN_PROGRESS,
                                        now=NOW + timedelta(minutes=30))

        self.assertEqual(first.started_at, NOW)
        self.assertEqual(second.started_at, NOW)
        self.assertEqual(second.status, TaskStatus.IN_PROGRESS)

    def test_direct_completion_leaves_start_unset(self):
        a = self.engine.transition(self.a.pk, OWNER, TaskStatus.DONE, now=NOW)

        self.assertIsNone(a.started_at)
        self.assertEqual(a.completed_at, NOW)

    def test_unknown_task(self):
        with self.assertRaises(TaskNotFound):
            self.engine.transition(uuid.uuid4(), OWNER, TaskStatus.IN_PROGRESS)

    def test_non_owner_forbidden(self):
        """Ownership is checked even when dependencies are satisfied."""
        with self.assertRaises(TransitionForbidden):
            self.engine.transition(self.a.pk, 'someone-else', TaskStatus.DONE)

        self.assertEqual(Task.objects.get(pk=self.a.pk).status, TaskStatus.PENDING)

    def test_forbidden_checked_before_dependencies(self):
        with self.assertRaises(TransitionForbidden):
            self.engine.transition(self.c.pk, 'someone-else', TaskStatus.DONE)

    def test_unassigned_task_forbidden(self):
        task = self.store.create_task(self.job_id, 'Unassigned')

        with self.assertRaises(TransitionForbidden):
            self.engine.transition(task.pk, OWNER, TaskStatus.IN_PROGRESS)

    def test_backward_transitions_rejected(self):
        self.engine.transition(self.a.pk, OWNER, TaskStatus.IN_PROGRESS)
        with self.assertRaises(InvalidTransition):
            self.engine.transition(self.a.pk, OWNER, TaskStatus.PENDING)

        self.engine.transition(self.a.pk, OWNER, TaskStatus.DONE)
        for new_status in (TaskStatus.PENDING, TaskStatus.IN_PROGRESS, TaskStatus.DONE):
            with self.assertRaises(InvalidTransition):
                self.engine.transition(self.a.pk, OWNER, new_status)

    def test_unknown_status_rejected(self):
        with self.assertRaises(InvalidTransition):
            self.engine.transition(self.a.pk, OWNER, 'archived')

    def test_transition_table(self):
        self.assertTrue(is_allowed('pending', 'in_progress'))
        self.assertTrue(is_allowed('pending', 'done'))
        self.assertTrue(is_allowed('in_progress', 'done'))
        self.assertFalse(is_allowed('pending', 'pending'))
        self.assertFalse(is_allowed('done', 'in_progress'))

    def test_missing_dependency_blocks_completion(self):
        """A dependency ID that no longer resolves blocks completion."""
        ghost = str(uuid.uuid4())
        Task.objects.filter(pk=self.a.pk).update(depends_on=[ghost])

        with self.assertRaises(DependencyNotSatisfied) as ctx:
            self.engine.transition(self.a.pk, OWNER, TaskStatus.DONE)

        self.assertEqual(ctx.exception.unsatisfied, [ghost])

    def test_dependency_in_other_job_not_counted(self):
        other = self.store.create_task(uuid.uuid4(), 'Elsewhere', assigned_to=OWNER)
        self.engine.transition(other.pk, OWNER, TaskStatus.DONE)
        Task.objects.filter(pk=self.a.pk).update(depends_on=[str(other.pk)])

        with self.assertRaises(DependencyNotSatisfied):
            self.engine.transition(self.a.pk, OWNER, TaskStatus.DONE)

    def test_completion_notifies_dependents_after_commit(self):
        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            self.engine.transition(self.a.pk, OWNER, TaskStatus.DONE)

        self.assertEqual(len(callbacks), 1)
        self.assertEqual(len(self.notifier.events), 1)
        event = self.notifier.events[0]
        self.assertEqual(event.job_id, str(self.job_id))
        self.assertEqual(event.completed_task_id, str(self.a.pk))
        self.assertEqual(
            set(event.newly_checkable_dependent_ids),
            {str(self.b.pk), str(self.c.pk)}
        )

    def test_completion_notice_is_only_a_hint(self):
        """C is listed as a dependent of A although B still blocks it."""
        with self.captureOnCommitCallbacks(execute=True):
            self.engine.transition(self.a.pk, OWNER, TaskStatus.DONE)

        self.assertIn(str(self.c.pk), self.notifier.events[0].newly_checkable_dependent_ids)
        with self.assertRaises(DependencyNotSatisfied):
            self.engine.transition(self.c.pk, OWNER, TaskStatus.DONE)

    def test_no_notification_without_completion(self):
        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            self.engine.transition(self.a.pk, OWNER, TaskStatus.IN_PROGRESS)
            with self.assertRaises(DependencyNotSatisfied):
                self.engine.transition(self.b.pk, OWNER, TaskStatus.DONE)

        self.assertEqual(callbacks, [])
        self.assertEqual(self.notifier.events, [])


class SignalNotifierTests(SimpleTestCase):
    """Tests for delivering completion events through the Django signal."""

    def setUp(self):
        self.event = TaskCompletedEvent(
            job_id='job-1',
            completed_task_id='task-a',
            newly_checkable_dependent_ids=('task-b',),
        )

    def test_receiver_gets_event(self):
        received = []

        def receiver(sender, event, **kwargs):
            received.append(event)

        task_completed.connect(receiver)
        try:
            SignalNotifier().notify(self.event)
        finally:
            task_completed.disconnect(receiver)

        self.assertEqual(received, [self.event])

    def test_failing_receiver_does_not_raise(self):
        def broken(sender, event, **kwargs):
            raise RuntimeError('dispatcher down')

        task_completed.connect(broken)
        try:
            with self.assertLogs('job_tasks.notifications', level='ERROR'):
                responses = SignalNotifier().notify(self.event)
        finally:
            task_completed.disconnect(broken)

        self.assertTrue(any(isinstance(r, RuntimeError) for _, r in responses))

    def test_event_to_dict(self):
        self.assertEqual(self.event.to_dict(), {
            'job_id': 'job-1',
            'completed_task_id': 'task-a',
            'newly_checkable_dependent_ids': ['task-b'],
        })


class GraphProjectorTests(SimpleTestCase):
    """Tests for projecting tasks into nodes and edges."""

    def make_task(self, title, status=TaskStatus.PENDING, depends_on=None):
        return Task(
            id=uuid.uuid4(),
            job_id=uuid.UUID(int=1),
            title=title,
            status=status,
            depends_on=[str(d.id) for d in (depends_on or [])],
        )

    def test_one_edge_per_dependency(self):
        a = self.make_task('A')
        b = self.make_task('B', depends_on=[a])

        graph = project([a, b])

        self.assertEqual(len(graph['nodes']), 2)
        self.assertEqual(len(graph['edges']), 1)
        edge = graph['edges'][0]
        self.assertEqual(edge['source'], str(a.id))
        self.assertEqual(edge['target'], str(b.id))
        self.assertEqual(edge['id'], f"{a.id}-{b.id}")

    def test_edge_pending_until_source_done(self):
        a = self.make_task('A', status=TaskStatus.IN_PROGRESS)
        b = self.make_task('B', depends_on=[a])

        edge = project([a, b])['edges'][0]
        self.assertEqual(edge['state'], EDGE_PENDING)
        self.assertTrue(edge['animated'])

        a.status = TaskStatus.DONE
        edge = project([a, b])['edges'][0]
        self.assertEqual(edge['state'], EDGE_SATISFIED)
        self.assertFalse(edge['animated'])

    def test_dangling_dependency_skipped(self):
        a = self.make_task('A')
        a.depends_on = [str(uuid.uuid4())]

        graph = project([a])

        self.assertEqual(len(graph['nodes']), 1)
        self.assertEqual(graph['edges'], [])

    def test_grid_layout_by_ordinal_position(self):
        tasks = [self.make_task(f'T{i}') for i in range(5)]
        positions = [node['position'] for node in project(tasks)['nodes']]

        self.assertEqual(positions, [
            {'x': 0, 'y': 0},
            {'x': 300, 'y': 0},
            {'x': 600, 'y': 0},
            {'x': 0, 'y': 200},
            {'x': 300, 'y': 200},
        ])

    def test_layout_ignores_order_index(self):
        a = self.make_task('A')
        a.order_index = 99

        self.assertEqual(project([a])['nodes'][0]['position'], {'x': 0, 'y': 0})

    @override_settings(JOB_TASKS={'GRAPH_COLUMNS': 2, 'GRAPH_X_SPACING': 100, 'GRAPH_Y_SPACING': 50})
    def test_grid_geometry_from_settings(self):
        tasks = [self.make_task(f'T{i}') for i in range(3)]
        positions = [node['position'] for node in project(tasks)['nodes']]

        self.assertEqual(positions, [{'x': 0, 'y': 0}, {'x': 100, 'y': 0}, {'x': 0, 'y': 50}])

    def test_edges_independent_of_input_order(self):
        a = self.make_task('A', status=TaskStatus.DONE)
        b = self.make_task('B', depends_on=[a])
        c = self.make_task('C', depends_on=[a, b])

        forward = project([a, b, c])
        backward = project([c, b, a])

        self.assertEqual(forward['edges'], backward['edges'])
        self.assertNotEqual(
            [n['position'] for n in forward['nodes'] if n['id'] == str(a.id)],
            [n['position'] for n in backward['nodes'] if n['id'] == str(a.id)],
        )

    def test_node_carries_display_data(self):
        a = self.make_task('Survey site', status=TaskStatus.DONE)
        a.completed_at = NOW

        node = project([a])['nodes'][0]

        self.assertEqual(node['id'], str(a.id))
        self.assertEqual(node['status'], 'done')
        self.assertEqual(node['data']['title'], 'Survey site')
        self.assertEqual(node['data']['completed_at'], NOW.isoformat())
        self.assertIsNone(node['data']['started_at'])

    def test_empty_task_list(self):
        self.assertEqual(project([]), {'nodes': [], 'edges': []})

    def test_summarize(self):
        tasks = [
            self.make_task('A', status=TaskStatus.DONE),
            self.make_task('B', status=TaskStatus.IN_PROGRESS),
            self.make_task('C'),
        ]

        self.assertEqual(summarize(tasks), {
            'total': 3,
            'pending': 1,
            'in_progress': 1,
            'done': 1,
            'completion_percent': 33,
        })
        self.assertEqual(summarize([])['completion_percent'], 0)

    def test_completion_percent_rounds_half_up(self):
        """1 of 8 done is 12.5%, shown as 13."""
        tasks = [self.make_task('A', status=TaskStatus.DONE)]
        tasks += [self.make_task(f'P{i}') for i in range(7)]

        self.assertEqual(summarize(tasks)['completion_percent'], 13)


class APIEndpointTests(APITestCase):
    """Tests for the API endpoints."""

    def setUp(self):
        self.user = get_user_model().objects.create_user(username='worker', password='pw')
        self.other = get_user_model().objects.create_user(username='other', password='pw')
        self.staff = get_user_model().objects.create_user(username='planner', password='pw', is_staff=True)
        self.owner_id = str(self.user.pk)
        self.store = TaskStore()
        self.job_id = uuid.uuid4()
        self.a = self.store.create_task(self.job_id, 'A', order_index=0, assigned_to=self.owner_id)
        self.b = self.store.create_task(self.job_id, 'B', order_index=1, assigned_to=self.owner_id,
                                        depends_on=[self.a.pk])
        self.client.force_authenticate(user=self.user)

    def transition(self, task, new_status):
        return self.client.post(
            '/api/tasks/transition/',
            {'task_id': str(task.pk), 'new_status': new_status},
            format='json'
        )

    def put_dependencies(self, task_id, depends_on):
        return self.client.put(
            f'/api/tasks/{task_id}/dependencies/',
            {'depends_on': [str(dep) for dep in depends_on]},
            format='json'
        )

    def test_transition_success(self):
        """POST /api/tasks/transition/ should return the updated task."""
        response = self.transition(self.a, 'in_progress')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['success'])
        self.assertEqual(response.data['task']['status'], 'in_progress')
        self.assertIsNotNone(response.data['task']['started_at'])

    def test_transition_blocked_by_dependencies(self):
        response = self.transition(self.b, 'done')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], 'dependency_not_satisfied')
        self.assertEqual(response.data['details']['unsatisfied'], [str(self.a.pk)])

    def test_transition_not_assigned(self):
        """Forbidden and blocked stay distinguishable."""
        self.client.force_authenticate(user=self.other)
        response = self.transition(self.b, 'done')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['code'], 'forbidden')

    def test_transition_unknown_task(self):
        response = self.client.post(
            '/api/tasks/transition/',
            {'task_id': str(uuid.uuid4()), 'new_status': 'done'},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['code'], 'not_found')

    def test_transition_backward(self):
        self.transition(self.a, 'done')
        response = self.transition(self.a, 'pending')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], 'invalid_transition')

    def test_transition_invalid_input(self):
        """Should return 400 for malformed requests."""
        response = self.client.post(
            '/api/tasks/transition/',
            {'task_id': 'not-a-uuid', 'new_status': 'finished'},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('task_id', response.data['details'])
        self.assertIn('new_status', response.data['details'])

    def test_transition_requires_authentication(self):
        self.client.force_authenticate(user=None)
        response = self.transition(self.a, 'in_progress')

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_job_tasks_endpoint(self):
        response = self.client.get(f'/api/jobs/{self.job_id}/tasks/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['total_tasks'], 2)
        self.assertEqual([t['title'] for t in response.data['tasks']], ['A', 'B'])

    def test_graph_endpoint_tracks_status(self):
        response = self.client.get(f'/api/jobs/{self.job_id}/graph/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data['nodes']), 2)
        self.assertEqual(response.data['edges'][0]['state'], 'pending')
        self.assertEqual(response.data['stats']['completion_percent'], 0)

        self.transition(self.a, 'done')
        response = self.client.get(f'/api/jobs/{self.job_id}/graph/')

        self.assertEqual(response.data['edges'][0]['state'], 'satisfied')
        self.assertEqual(response.data['stats']['done'], 1)
        self.assertEqual(response.data['stats']['completion_percent'], 50)

    def test_set_dependencies_endpoint(self):
        self.client.force_authenticate(user=self.staff)
        response = self.put_dependencies(self.b.pk, [])

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['depends_on'], [])

    def test_set_dependencies_cycle(self):
        self.client.force_authenticate(user=self.staff)
        response = self.put_dependencies(self.a.pk, [self.b.pk])

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'cycle_detected')

    def test_set_dependencies_self(self):
        self.client.force_authenticate(user=self.staff)
        response = self.put_dependencies(self.a.pk, [self.a.pk])

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'invalid_dependency')

    def test_set_dependencies_unknown_task(self):
        self.client.force_authenticate(user=self.staff)
        response = self.put_dependencies(uuid.uuid4(), [])

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_assignee_cannot_remove_blocking_dependency(self):
        """A blocked assignee cannot clear prerequisites to complete early."""
        self.assertEqual(self.transition(self.b, 'done').status_code, status.HTTP_409_CONFLICT)

        response = self.put_dependencies(self.b.pk, [])
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        response = self.transition(self.b, 'done')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], 'dependency_not_satisfied')

        b = Task.objects.get(pk=self.b.pk)
        self.assertEqual(b.depends_on, [str(self.a.pk)])
        self.assertEqual(b.status, TaskStatus.PENDING)

    def test_set_dependencies_of_started_task_rejected(self):
        self.transition(self.b, 'in_progress')
        self.client.force_authenticate(user=self.staff)

        response = self.put_dependencies(self.b.pk, [])

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'invalid_dependency')
        self.assertEqual(Task.objects.get(pk=self.b.pk).depends_on, [str(self.a.pk)])

    def test_health_endpoint(self):
        """GET /api/health/ should return ok status."""
        self.client.force_authenticate(user=None)
        response = self.client.get('/api/health/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'ok')


class CheckTaskGraphCommandTests(TestCase):
    """Tests for the check_task_graph management command."""

    def setUp(self):
        self.store = TaskStore()
        self.job_id = uuid.uuid4()
        self.a = self.store.create_task(self.job_id, 'A')
        self.b = self.store.create_task(self.job_id, 'B', depends_on=[self.a.pk])

    def run_command(self, *args):
        out, err = StringIO(), StringIO()
        call_command('check_task_graph', *args, stdout=out, stderr=err)
        return out.getvalue(), err.getvalue()

    def test_clean_graph(self):
        out, _ = self.run_command()

        self.assertIn('no dependency cycles', out)

    def test_reports_dangling_dependency(self):
        ghost = str(uuid.uuid4())
        Task.objects.filter(pk=self.a.pk).update(depends_on=[ghost])

        out, _ = self.run_command('--job', str(self.job_id))

        self.assertIn(ghost, out)

    def test_cycle_fails(self):
        # Simulates data written before dependency validation existed
        Task.objects.filter(pk=self.a.pk).update(depends_on=[str(self.b.pk)])

        with self.assertRaises(CommandError):
            self.run_command()
