"""
Notification hook for completed tasks.

When a task reaches ``done`` the transition engine publishes a
``TaskCompletedEvent`` listing the same-job tasks that depend on it. The event
is a hint that those dependents are worth re-checking, not a guarantee that
they are unblocked: their own gating runs again on their next transition.

Receivers connect to the ``task_completed`` signal::

    from job_tasks.notifications import task_completed

    def surface_dependents(sender, event, **kwargs):
        ...

    task_completed.connect(surface_dependents)
"""

import logging
from dataclasses import asdict, dataclass, field

from django.dispatch import Signal

logger = logging.getLogger(__name__)

task_completed = Signal()


@dataclass(frozen=True)
class TaskCompletedEvent:
    job_id: str
    completed_task_id: str
    newly_checkable_dependent_ids: tuple = field(default_factory=tuple)

    def to_dict(self) -> dict:
        data = asdict(self)
        data['newly_checkable_dependent_ids'] = list(self.newly_checkable_dependent_ids)
        return data


class SignalNotifier:
    """Deliver completion events to ``task_completed`` receivers."""

    def __init__(self, signal: Signal = task_completed):
        self.signal = signal

    def notify(self, event: TaskCompletedEvent):
        # Receiver failures must not surface as a failed transition
        responses = self.signal.send_robust(sender=self.__class__, event=event)
        for receiver, response in responses:
            if isinstance(response, Exception):
                logger.error(
                    "Notification receiver %r failed for task %s",
                    receiver, event.completed_task_id,
                    exc_info=(type(response), response, response.__traceback__),
                )
        return responses
