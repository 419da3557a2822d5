from decimal import Decimal

import pytest

from escrow import signals
from escrow.exceptions import (
    DuplicateRequest,
    InsufficientFunds,
    InvalidAmount,
    InvalidStateTransition,
    NotFound,
    Unauthorized,
)
from escrow.models import EscrowAccount, LedgerEntry, ReleaseRequest
from projects import registry
from projects.models import Milestone, Project
from projects.registry import MilestoneRegistry


def ledger(project):
    account = EscrowAccount.objects.get(project=project)
    return account.total_funded, account.held_amount, account.released_amount


@pytest.mark.django_db
class TestFunding:

    def test_first_funding_creates_the_account(self, service, client_user, project):
        service.fund(user=client_user, project_id=project.pk, amount=Decimal('1000'))

        snapshot = service.get_escrow_snapshot(user=client_user, project_id=project.pk)
        assert snapshot.account.total_funded == Decimal('1000.00')
        assert snapshot.account.held_amount == Decimal('1000.00')
        assert snapshot.account.released_amount == Decimal('0.00')

    def test_fundings_accumulate(self, service, client_user, project):
        service.fund(user=client_user, project_id=project.pk, amount='100')
        service.fund(user=client_user, project_id=project.pk, amount='50')

        assert ledger(project) == (Decimal('150.00'), Decimal('150.00'), Decimal('0.00'))
        entries = LedgerEntry.objects.filter(account__project=project)
        assert entries.count() == 2
        assert all(entry.entry_type == LedgerEntry.FUNDING for entry in entries)

    @pytest.mark.parametrize('amount', ['0', '-25', 'abc', None])
    def test_invalid_amount(self, service, client_user, project, amount):
        with pytest.raises(InvalidAmount):
            service.fund(user=client_user, project_id=project.pk, amount=amount)
        assert not EscrowAccount.objects.filter(project=project).exists()

    def test_only_the_project_client_may_fund(self, service, expert_user, other_client, project):
        for user in (expert_user, other_client):
            with pytest.raises(Unauthorized):
                service.fund(user=user, project_id=project.pk, amount='10')
        assert not EscrowAccount.objects.filter(project=project).exists()

    def test_top_up_past_capacity_is_an_invalid_amount(self, service, client_user, project):
        service.fund(user=client_user, project_id=project.pk, amount='999999999999.99')

        with pytest.raises(InvalidAmount):
            service.fund(user=client_user, project_id=project.pk, amount='999999999999.99')

        assert ledger(project) == (Decimal('999999999999.99'), Decimal('999999999999.99'), Decimal('0.00'))
        assert LedgerEntry.objects.filter(account__project=project).count() == 1

    def test_unknown_project(self, service, client_user):
        with pytest.raises(NotFound):
            service.fund(user=client_user, project_id=424242, amount='10')

    def test_fee_percent_comes_from_settings(self, service, client_user, project, settings):
        settings.PLATFORM_FEE_PERCENT = Decimal('5.00')
        account = service.fund(user=client_user, project_id=project.pk, amount='10')
        assert account.platform_fee_percent == Decimal('5.00')


@pytest.mark.django_db
class TestSnapshot:

    def test_unfunded_project_has_no_snapshot(self, service, client_user, project):
        with pytest.raises(NotFound):
            service.get_escrow_snapshot(user=client_user, project_id=project.pk)

    def test_expert_can_view(self, service, expert_user, funded_project, milestone):
        snapshot = service.get_escrow_snapshot(user=expert_user, project_id=funded_project.pk)
        assert snapshot.milestones == [milestone]
        assert snapshot.release_ids == {}

    def test_outsider_cannot_view(self, service, other_expert, funded_project):
        with pytest.raises(Unauthorized):
            service.get_escrow_snapshot(user=other_expert, project_id=funded_project.pk)

    def test_release_id_derived_from_open_request(self, service, expert_user, funded_project, milestone):
        release = service.request_release(
            user=expert_user, project_id=funded_project.pk, milestone_id=milestone.pk, amount='300',
        )
        snapshot = service.get_escrow_snapshot(user=expert_user, project_id=funded_project.pk)
        assert snapshot.release_ids == {milestone.pk: release.pk}


@pytest.mark.django_db
class TestReleaseWorkflow:

    def test_request_moves_milestone_to_pending_release(self, service, expert_user, funded_project, milestone):
        release = service.request_release(
            user=expert_user, project_id=funded_project.pk, milestone_id=milestone.pk, amount='300',
        )

        milestone.refresh_from_db()
        assert milestone.status == Milestone.PENDING_RELEASE
        assert release.status == ReleaseRequest.OPEN
        assert release.requested_by == expert_user
        assert release.platform_fee == Decimal('30.00')
        assert release.expert_receives == Decimal('270.00')

    def test_second_request_is_a_duplicate(self, service, expert_user, funded_project, milestone):
        service.request_release(user=expert_user, project_id=funded_project.pk, milestone_id=milestone.pk, amount='300')

        with pytest.raises(DuplicateRequest):
            service.request_release(
                user=expert_user, project_id=funded_project.pk, milestone_id=milestone.pk, amount='300',
            )
        assert ReleaseRequest.objects.filter(milestone=milestone).count() == 1

    def test_approve_releases_funds_and_completes_milestone(self, service, client_user, expert_user, funded_project, milestone):
        release = service.request_release(
            user=expert_user, project_id=funded_project.pk, milestone_id=milestone.pk, amount='300',
        )
        release, milestone, account = service.approve_release(
            user=client_user, project_id=funded_project.pk, release_id=release.pk,
        )

        assert ledger(funded_project) == (Decimal('1000.00'), Decimal('700.00'), Decimal('300.00'))
        assert account.held_amount == Decimal('700.00')
        milestone.refresh_from_db()
        assert milestone.status == Milestone.COMPLETED
        release.refresh_from_db()
        assert release.status == ReleaseRequest.APPROVED
        assert release.approved_by == client_user

        entry = LedgerEntry.objects.get(release_request=release)
        assert entry.entry_type == LedgerEntry.RELEASE
        assert entry.amount == Decimal('300.00')
        assert entry.held_after == Decimal('700.00')
        assert entry.released_after == Decimal('300.00')

    def test_approve_with_insufficient_held_leaves_everything_unchanged(
            self, service, client_user, expert_user, funded_project, make_milestone):
        big = make_milestone('800.00', title='Backend')
        late = make_milestone('300.00', title='Polish')

        first = service.request_release(user=expert_user, project_id=funded_project.pk, milestone_id=big.pk, amount='800')
        service.approve_release(user=client_user, project_id=funded_project.pk, release_id=first.pk)
        assert ledger(funded_project) == (Decimal('1000.00'), Decimal('200.00'), Decimal('800.00'))

        second = service.request_release(user=expert_user, project_id=funded_project.pk, milestone_id=late.pk, amount='300')
        with pytest.raises(InsufficientFunds):
            service.approve_release(user=client_user, project_id=funded_project.pk, release_id=second.pk)

        assert ledger(funded_project) == (Decimal('1000.00'), Decimal('200.00'), Decimal('800.00'))
        second.refresh_from_db()
        late.refresh_from_db()
        assert second.status == ReleaseRequest.OPEN
        assert late.status == Milestone.PENDING_RELEASE

        # topping up makes the same request approvable
        service.fund(user=client_user, project_id=funded_project.pk, amount='100')
        service.approve_release(user=client_user, project_id=funded_project.pk, release_id=second.pk)
        assert ledger(funded_project) == (Decimal('1100.00'), Decimal('0.00'), Decimal('1100.00'))

    def test_approve_without_funding(self, service, client_user, expert_user, project, milestone):
        release = service.request_release(user=expert_user, project_id=project.pk, milestone_id=milestone.pk, amount='100')
        with pytest.raises(InsufficientFunds):
            service.approve_release(user=client_user, project_id=project.pk, release_id=release.pk)

    def test_reject_returns_milestone_to_in_progress(self, service, client_user, expert_user, funded_project, milestone):
        release = service.request_release(
            user=expert_user, project_id=funded_project.pk, milestone_id=milestone.pk, amount='300',
        )
        release, milestone = service.reject_release(
            user=client_user, project_id=funded_project.pk, release_id=release.pk, reason='incomplete',
        )

        assert ledger(funded_project) == (Decimal('1000.00'), Decimal('1000.00'), Decimal('0.00'))
        milestone.refresh_from_db()
        release.refresh_from_db()
        assert milestone.status == Milestone.IN_PROGRESS
        assert release.status == ReleaseRequest.REJECTED
        assert release.reason == 'incomplete'

        # a fresh request may follow a rejected one
        again = service.request_release(
            user=expert_user, project_id=funded_project.pk, milestone_id=milestone.pk, amount='250',
        )
        assert again.pk != release.pk

    def test_withdraw_by_requesting_expert(self, service, expert_user, funded_project, milestone):
        release = service.request_release(
            user=expert_user, project_id=funded_project.pk, milestone_id=milestone.pk, amount='300',
        )
        release, milestone = service.withdraw_release(
            user=expert_user, project_id=funded_project.pk, release_id=release.pk,
        )

        assert release.status == ReleaseRequest.WITHDRAWN
        milestone.refresh_from_db()
        assert milestone.status == Milestone.IN_PROGRESS

    def test_withdraw_by_anyone_else_is_refused(self, service, client_user, other_expert, expert_user, funded_project, milestone):
        release = service.request_release(
            user=expert_user, project_id=funded_project.pk, milestone_id=milestone.pk, amount='300',
        )
        for user in (client_user, other_expert):
            with pytest.raises(Unauthorized):
                service.withdraw_release(user=user, project_id=funded_project.pk, release_id=release.pk)

        release.refresh_from_db()
        assert release.is_open

    def test_withdraw_by_non_expert_does_not_reveal_release_ids(
            self, service, client_user, other_expert, expert_user, funded_project, milestone):
        release = service.request_release(
            user=expert_user, project_id=funded_project.pk, milestone_id=milestone.pk, amount='300',
        )
        for release_id in (release.pk, release.pk + 1000):
            for user in (client_user, other_expert):
                with pytest.raises(Unauthorized):
                    service.withdraw_release(user=user, project_id=funded_project.pk, release_id=release_id)

        # the assigned expert still learns that an unknown id does not exist
        with pytest.raises(NotFound):
            service.withdraw_release(user=expert_user, project_id=funded_project.pk, release_id=release.pk + 1000)

    def test_second_approval_changes_nothing(self, service, client_user, expert_user, funded_project, milestone):
        release = service.request_release(
            user=expert_user, project_id=funded_project.pk, milestone_id=milestone.pk, amount='300',
        )
        service.approve_release(user=client_user, project_id=funded_project.pk, release_id=release.pk)

        with pytest.raises(InvalidStateTransition):
            service.approve_release(user=client_user, project_id=funded_project.pk, release_id=release.pk)

        assert ledger(funded_project) == (Decimal('1000.00'), Decimal('700.00'), Decimal('300.00'))
        assert LedgerEntry.objects.filter(release_request=release).count() == 1

    def test_resolved_requests_are_final(self, service, client_user, expert_user, funded_project, milestone):
        release = service.request_release(
            user=expert_user, project_id=funded_project.pk, milestone_id=milestone.pk, amount='300',
        )
        service.approve_release(user=client_user, project_id=funded_project.pk, release_id=release.pk)

        with pytest.raises(InvalidStateTransition):
            service.approve_release(user=client_user, project_id=funded_project.pk, release_id=release.pk)
        with pytest.raises(InvalidStateTransition):
            service.reject_release(user=client_user, project_id=funded_project.pk, release_id=release.pk)
        with pytest.raises(InvalidStateTransition):
            service.withdraw_release(user=expert_user, project_id=funded_project.pk, release_id=release.pk)

        # money moved exactly once
        assert ledger(funded_project) == (Decimal('1000.00'), Decimal('700.00'), Decimal('300.00'))
        assert LedgerEntry.objects.filter(entry_type=LedgerEntry.RELEASE).count() == 1

    def test_completed_milestone_cannot_be_requested_again(self, service, client_user, expert_user, funded_project, milestone):
        release = service.request_release(
            user=expert_user, project_id=funded_project.pk, milestone_id=milestone.pk, amount='300',
        )
        service.approve_release(user=client_user, project_id=funded_project.pk, release_id=release.pk)

        with pytest.raises(InvalidStateTransition):
            service.request_release(
                user=expert_user, project_id=funded_project.pk, milestone_id=milestone.pk, amount='300',
            )

    @pytest.mark.parametrize('amount', ['0', '-1', '300.01'])
    def test_request_amount_bounds(self, service, expert_user, funded_project, milestone, amount):
        with pytest.raises(InvalidAmount):
            service.request_release(
                user=expert_user, project_id=funded_project.pk, milestone_id=milestone.pk, amount=amount,
            )
        milestone.refresh_from_db()
        assert milestone.status == Milestone.IN_PROGRESS

    def test_partial_amount_is_allowed(self, service, expert_user, funded_project, milestone):
        release = service.request_release(
            user=expert_user, project_id=funded_project.pk, milestone_id=milestone.pk, amount='120.50',
        )
        assert release.amount == Decimal('120.50')

    def test_pending_milestone_must_be_started_first(self, service, expert_user, funded_project, make_milestone):
        milestone = make_milestone('200.00', status=Milestone.PENDING)

        with pytest.raises(InvalidStateTransition):
            service.request_release(
                user=expert_user, project_id=funded_project.pk, milestone_id=milestone.pk, amount='200',
            )

        service.start_milestone(user=expert_user, project_id=funded_project.pk, milestone_id=milestone.pk)
        release = service.request_release(
            user=expert_user, project_id=funded_project.pk, milestone_id=milestone.pk, amount='200',
        )
        assert release.is_open

    def test_client_cannot_start_or_request(self, service, client_user, funded_project, make_milestone):
        milestone = make_milestone('200.00', status=Milestone.PENDING)
        with pytest.raises(Unauthorized):
            service.start_milestone(user=client_user, project_id=funded_project.pk, milestone_id=milestone.pk)
        with pytest.raises(Unauthorized):
            service.request_release(
                user=client_user, project_id=funded_project.pk, milestone_id=milestone.pk, amount='200',
            )

    def test_expert_cannot_approve_own_request(self, service, expert_user, funded_project, milestone):
        release = service.request_release(
            user=expert_user, project_id=funded_project.pk, milestone_id=milestone.pk, amount='300',
        )
        with pytest.raises(Unauthorized):
            service.approve_release(user=expert_user, project_id=funded_project.pk, release_id=release.pk)
        assert ledger(funded_project) == (Decimal('1000.00'), Decimal('1000.00'), Decimal('0.00'))

    def test_release_of_another_project_is_not_found(
            self, service, client_user, expert_user, funded_project, milestone):
        release = service.request_release(
            user=expert_user, project_id=funded_project.pk, milestone_id=milestone.pk, amount='300',
        )
        elsewhere = Project.objects.create(client=client_user, expert=expert_user, title='Other')
        with pytest.raises(NotFound):
            service.approve_release(user=client_user, project_id=elsewhere.pk, release_id=release.pk)

    def test_failure_mid_approval_rolls_back(self, service, client_user, expert_user, funded_project, milestone, monkeypatch):
        release = service.request_release(
            user=expert_user, project_id=funded_project.pk, milestone_id=milestone.pk, amount='300',
        )
        original = MilestoneRegistry.transition

        def failing_transition(self, milestone, event):
            if event == registry.APPROVE_RELEASE:
                raise RuntimeError('database went away')
            return original(self, milestone, event)

        monkeypatch.setattr(MilestoneRegistry, 'transition', failing_transition)
        with pytest.raises(RuntimeError):
            service.approve_release(user=client_user, project_id=funded_project.pk, release_id=release.pk)

        assert ledger(funded_project) == (Decimal('1000.00'), Decimal('1000.00'), Decimal('0.00'))
        release.refresh_from_db()
        assert release.is_open
        assert not LedgerEntry.objects.filter(entry_type=LedgerEntry.RELEASE).exists()

    def test_list_releases_and_history(self, service, client_user, expert_user, funded_project, make_milestone):
        first = make_milestone('100.00', title='One')
        second = make_milestone('200.00', title='Two')
        r1 = service.request_release(user=expert_user, project_id=funded_project.pk, milestone_id=first.pk, amount='100')
        r2 = service.request_release(user=expert_user, project_id=funded_project.pk, milestone_id=second.pk, amount='200')
        service.approve_release(user=client_user, project_id=funded_project.pk, release_id=r1.pk)

        releases = service.list_releases(user=expert_user, project_id=funded_project.pk)
        assert {r.pk for r in releases} == {r1.pk, r2.pk}

        history = service.get_history(user=client_user, project_id=funded_project.pk)
        assert [entry.entry_type for entry in history] == [LedgerEntry.RELEASE, LedgerEntry.FUNDING]


@pytest.mark.django_db
class TestSignals:

    @pytest.fixture
    def received(self):
        events = []

        def handler(sender, signal, **kwargs):
            events.append((signals.SIGNAL_NAMES[signal], kwargs))

        for signal in signals.SIGNAL_NAMES:
            signal.connect(handler, weak=False, dispatch_uid='test-recorder')
        yield events
        for signal in signals.SIGNAL_NAMES:
            signal.disconnect(dispatch_uid='test-recorder')

    def test_signals_follow_commit(self, service, client_user, expert_user, project, milestone, received,
                                  django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            service.fund(user=client_user, project_id=project.pk, amount='500')
            release = service.request_release(
                user=expert_user, project_id=project.pk, milestone_id=milestone.pk, amount='300',
            )
            service.approve_release(user=client_user, project_id=project.pk, release_id=release.pk)

        assert [name for name, _ in received] == ['escrow_funded', 'release_requested', 'release_approved']
        assert received[0][1]['amount'] == Decimal('500.00')
        assert received[2][1]['release_request'].pk == release.pk
        assert received[2][1]['actor'] == client_user

    def test_failed_operation_sends_nothing(self, service, expert_user, project, received,
                                            django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True) as callbacks:
            with pytest.raises(Unauthorized):
                service.fund(user=expert_user, project_id=project.pk, amount='500')

        assert callbacks == []
        assert received == []
