from collections import namedtuple
from decimal import Decimal, InvalidOperation
import logging

from django.conf import settings
from django.db import IntegrityError, transaction

from projects.models import Project, Milestone
from projects import registry as milestone_events
from projects.registry import MilestoneRegistry
from . import permissions as ops
from . import signals
from .exceptions import DuplicateRequest, InsufficientFunds, InvalidAmount, InvalidStateTransition, NotFound
from .models import EscrowAccount, LedgerEntry, ReleaseRequest, to_money
from .permissions import AuthorizationGuard

logger = logging.getLogger(__name__)

EscrowSnapshot = namedtuple('EscrowSnapshot', ['account', 'milestones', 'release_ids'])


def _parse_amount(amount):
    try:
        return to_money(amount)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmount(f"'{amount}' is not a valid amount.")


class EscrowService:
    """
    The only place escrow and milestone state is mutated.

    Each mutating call runs in one database transaction that first locks the
    project row, so all writes to a project's account, milestones and release
    requests are serialized, while different projects proceed independently.
    Every mutation is checked by the AuthorizationGuard before any state
    changes. Signals are sent only once the transaction has committed.
    """

    def __init__(self, guard=None):
        self.guard = guard or AuthorizationGuard()

    # -- lookups -----------------------------------------------------------

    def _get_project(self, project_id, for_update=False):
        if for_update:
            queryset = Project.objects.select_for_update()
        else:
            queryset = Project.objects.select_related('client', 'expert')
        try:
            return queryset.get(pk=project_id)
        except Project.DoesNotExist:
            raise NotFound(f"Project {project_id} not found.")

    def _get_account(self, project, for_update=False):
        queryset = EscrowAccount.objects.filter(project=project)
        if for_update:
            queryset = queryset.select_for_update()
        return queryset.first()

    def _get_release(self, project, release_id, for_update=False):
        queryset = ReleaseRequest.objects.select_related('milestone')
        if for_update:
            queryset = queryset.select_for_update()
        try:
            return queryset.get(pk=release_id, milestone__project=project)
        except ReleaseRequest.DoesNotExist:
            raise NotFound(f"Release request {release_id} not found in project {project.pk}.")

    def _check_single_open_request(self, release):
        open_count = ReleaseRequest.objects.filter(
            milestone_id=release.milestone_id,
            status=ReleaseRequest.OPEN,
        ).count()
        if not release.is_open or open_count != 1:
            raise InvalidStateTransition(
                f"Release request {release.pk} is '{release.status}' and cannot be resolved."
            )
        if release.milestone.status != Milestone.PENDING_RELEASE:
            raise InvalidStateTransition(
                f"Milestone {release.milestone_id} is '{release.milestone.status}', not awaiting release."
            )

    # -- ledger ------------------------------------------------------------

    def fund(self, *, user, project_id, amount):
        """
        Top up a project's escrow. Creates the account on first funding.
        Returns the updated EscrowAccount.
        """
        amount = _parse_amount(amount)

        with transaction.atomic():
            project = self._get_project(project_id, for_update=True)
            self.guard.check(user, project, ops.FUND)

            account = self._get_account(project, for_update=True)
            if account is None:
                account = EscrowAccount(
                    project=project,
                    platform_fee_percent=settings.PLATFORM_FEE_PERCENT,
                )
            account.fund(amount)
            account.save()

            LedgerEntry.objects.create(
                account=account,
                entry_type=LedgerEntry.FUNDING,
                amount=amount,
                actor=user,
                held_after=account.held_amount,
                released_after=account.released_amount,
            )

            transaction.on_commit(lambda: signals.escrow_funded.send(
                sender=self.__class__, project=project, actor=user, account=account, amount=amount,
            ))

        logger.info(
            f"Escrow funded for project {project.pk}: +{amount}",
            extra={
                'project_id': project.pk,
                'total_funded': str(account.total_funded),
                'held_amount': str(account.held_amount),
            },
        )
        return account

    def get_escrow_snapshot(self, *, user, project_id):
        """
        Read-only view of the ledger plus every milestone of the project.
        `release_ids` maps each milestone awaiting release to its open request.
        """
        with transaction.atomic():
            project = self._get_project(project_id)
            self.guard.check(user, project, ops.VIEW)

            account = self._get_account(project)
            if account is None:
                raise NotFound(f"Escrow has not been funded for project {project.pk}.")

            milestones = list(MilestoneRegistry(project).all())
            release_ids = dict(
                ReleaseRequest.objects.filter(
                    milestone__project=project,
                    status=ReleaseRequest.OPEN,
                ).values_list('milestone_id', 'id')
            )

        return EscrowSnapshot(account=account, milestones=milestones, release_ids=release_ids)

    def get_history(self, *, user, project_id):
        project = self._get_project(project_id)
        self.guard.check(user, project, ops.VIEW)
        return LedgerEntry.objects.filter(account__project=project).select_related('actor', 'release_request')

    # -- milestones & release requests -------------------------------------

    def start_milestone(self, *, user, project_id, milestone_id):
        with transaction.atomic():
            project = self._get_project(project_id, for_update=True)
            self.guard.check(user, project, ops.START_MILESTONE)

            milestones = MilestoneRegistry(project)
            milestone = milestones.get(milestone_id, for_update=True)
            milestones.transition(milestone, milestone_events.START)

        logger.info(f"Milestone {milestone.pk} started on project {project.pk}")
        return milestone

    def request_release(self, *, user, project_id, milestone_id, amount):
        """
        Open a release request for a milestone that is in progress and move the
        milestone to pending_release. Returns the new ReleaseRequest.
        """
        amount = _parse_amount(amount)

        with transaction.atomic():
            project = self._get_project(project_id, for_update=True)
            self.guard.check(user, project, ops.REQUEST_RELEASE)

            milestones = MilestoneRegistry(project)
            milestone = milestones.get(milestone_id, for_update=True)

            if amount <= 0:
                raise InvalidAmount("Release amount must be greater than zero.")
            if amount > milestone.amount:
                raise InvalidAmount(
                    f"Release amount {amount} exceeds the milestone amount of {milestone.amount}."
                )
            if milestone.release_requests.filter(status=ReleaseRequest.OPEN).exists():
                raise DuplicateRequest(f"Milestone {milestone.pk} already has an open release request.")
            if not milestones.can_transition(milestone, milestone_events.REQUEST_RELEASE):
                raise InvalidStateTransition(
                    f"Release can only be requested for a milestone in progress; milestone {milestone.pk} is '{milestone.status}'."
                )

            account = self._get_account(project)
            fee_percent = account.platform_fee_percent if account else settings.PLATFORM_FEE_PERCENT
            platform_fee = to_money(amount * Decimal(fee_percent) / Decimal('100'))

            try:
                with transaction.atomic():
                    release = ReleaseRequest.objects.create(
                        milestone=milestone,
                        amount=amount,
                        platform_fee=platform_fee,
                        expert_receives=amount - platform_fee,
                        requested_by=user,
                    )
            except IntegrityError:
                raise DuplicateRequest(f"Milestone {milestone.pk} already has an open release request.")

            milestones.transition(milestone, milestone_events.REQUEST_RELEASE)

            transaction.on_commit(lambda: signals.release_requested.send(
                sender=self.__class__, project=project, actor=user, release_request=release,
            ))

        logger.info(
            f"Release {release.pk} requested for milestone {milestone.pk}: {amount}",
            extra={'project_id': project.pk, 'expert_id': user.pk},
        )
        return release

    def approve_release(self, *, user, project_id, release_id):
        """
        Release the requested amount from held to released and complete the
        milestone, all in one transaction. Returns (release, milestone, account).
        """
        with transaction.atomic():
            project = self._get_project(project_id, for_update=True)
            self.guard.check(user, project, ops.APPROVE_RELEASE)

            release = self._get_release(project, release_id, for_update=True)
            self._check_single_open_request(release)
            milestone = release.milestone

            account = self._get_account(project, for_update=True)
            if account is None:
                raise InsufficientFunds(f"Escrow has not been funded for project {project.pk}.")

            account.debit_held(release.amount)
            account.credit_released(release.amount)
            account.save()

            LedgerEntry.objects.create(
                account=account,
                entry_type=LedgerEntry.RELEASE,
                amount=release.amount,
                actor=user,
                release_request=release,
                held_after=account.held_amount,
                released_after=account.released_amount,
            )

            release.mark_approved(user)
            release.save(update_fields=['status', 'approved_by', 'resolved_at'])

            MilestoneRegistry(project).transition(milestone, milestone_events.APPROVE_RELEASE)

            transaction.on_commit(lambda: signals.release_approved.send(
                sender=self.__class__, project=project, actor=user, release_request=release, account=account,
            ))

        logger.info(
            f"Release {release.pk} approved on project {project.pk}: {release.amount}",
            extra={
                'project_id': project.pk,
                'held_amount': str(account.held_amount),
                'released_amount': str(account.released_amount),
            },
        )
        return release, milestone, account

    def reject_release(self, *, user, project_id, release_id, reason=''):
        with transaction.atomic():
            project = self._get_project(project_id, for_update=True)
            self.guard.check(user, project, ops.REJECT_RELEASE)

            release = self._get_release(project, release_id, for_update=True)
            self._check_single_open_request(release)

            release.mark_rejected(user, reason)
            release.save(update_fields=['status', 'rejected_by', 'reason', 'resolved_at'])

            milestone = release.milestone
            MilestoneRegistry(project).transition(milestone, milestone_events.REJECT_RELEASE)

            transaction.on_commit(lambda: signals.release_rejected.send(
                sender=self.__class__, project=project, actor=user, release_request=release,
            ))

        logger.info(f"Release {release.pk} rejected on project {project.pk}: {reason or '-'}")
        return release, milestone

    def withdraw_release(self, *, user, project_id, release_id):
        with transaction.atomic():
            project = self._get_project(project_id, for_update=True)
            self.guard.check_capability(user, project, ops.WITHDRAW_RELEASE)
            release = self._get_release(project, release_id, for_update=True)
            self.guard.check(user, project, ops.WITHDRAW_RELEASE, release_request=release)

            if not release.is_open:
                raise InvalidStateTransition(f"Release request {release.pk} is already {release.status}.")

            release.mark_withdrawn()
            release.save(update_fields=['status', 'resolved_at'])

            milestone = release.milestone
            MilestoneRegistry(project).transition(milestone, milestone_events.WITHDRAW_RELEASE)

            transaction.on_commit(lambda: signals.release_withdrawn.send(
                sender=self.__class__, project=project, actor=user, release_request=release,
            ))

        logger.info(f"Release {release.pk} withdrawn on project {project.pk}")
        return release, milestone

    def list_releases(self, *, user, project_id):
        project = self._get_project(project_id)
        self.guard.check(user, project, ops.VIEW)
        return ReleaseRequest.objects.filter(milestone__project=project).select_related(
            'milestone', 'requested_by', 'approved_by', 'rejected_by',
        )
