"""
Milestone lifecycle.

    pending ──start──> in_progress
    in_progress ──request_release──> pending_release
    pending_release ──approve_release──> completed      (terminal)
    pending_release ──reject_release──> in_progress
    pending_release ──withdraw_release──> in_progress
"""
import logging

from django.utils import timezone

from escrow.exceptions import InvalidStateTransition, NotFound
from .models import Milestone

logger = logging.getLogger(__name__)

START = 'start'
REQUEST_RELEASE = 'request_release'
APPROVE_RELEASE = 'approve_release'
REJECT_RELEASE = 'reject_release'
WITHDRAW_RELEASE = 'withdraw_release'

TRANSITIONS = {
    (Milestone.PENDING, START): Milestone.IN_PROGRESS,
    (Milestone.IN_PROGRESS, REQUEST_RELEASE): Milestone.PENDING_RELEASE,
    (Milestone.PENDING_RELEASE, APPROVE_RELEASE): Milestone.COMPLETED,
    (Milestone.PENDING_RELEASE, REJECT_RELEASE): Milestone.IN_PROGRESS,
    (Milestone.PENDING_RELEASE, WITHDRAW_RELEASE): Milestone.IN_PROGRESS,
}


class MilestoneRegistry:
    """The milestones of one project and the transitions allowed between their states."""

    def __init__(self, project):
        self.project = project

    def all(self):
        return Milestone.objects.filter(project=self.project)

    def get(self, milestone_id, for_update=False):
        queryset = self.all()
        if for_update:
            queryset = queryset.select_for_update()
        try:
            return queryset.get(pk=milestone_id)
        except Milestone.DoesNotExist:
            raise NotFound(f"Milestone {milestone_id} not found in project {self.project.pk}.")

    @staticmethod
    def can_transition(milestone, event):
        return (milestone.status, event) in TRANSITIONS

    def transition(self, milestone, event):
        target = TRANSITIONS.get((milestone.status, event))
        if target is None:
            raise InvalidStateTransition(
                f"Cannot {event.replace('_', ' ')} while milestone {milestone.pk} is '{milestone.status}'."
            )

        previous = milestone.status
        milestone.status = target
        update_fields = ['status']
        if target == Milestone.IN_PROGRESS and milestone.started_at is None:
            milestone.started_at = timezone.now()
            update_fields.append('started_at')
        if target == Milestone.COMPLETED:
            milestone.completed_at = timezone.now()
            update_fields.append('completed_at')
        milestone.save(update_fields=update_fields)

        logger.debug(f"Milestone {milestone.pk}: {previous} -> {target} ({event})")
        return milestone
