from decimal import Decimal

from django.db import models
from django.contrib.auth import get_user_model
from django.utils import timezone
from auditlog.registry import auditlog
from auditlog.models import AuditlogHistoryField

from projects.models import Project, Milestone
from .exceptions import InvalidAmount, InsufficientFunds, InvalidStateTransition, LedgerInvariantError

User = get_user_model()

ZERO = Decimal('0.00')
CENT = Decimal('0.01')


def to_money(value):
    return Decimal(str(value)).quantize(CENT)


def field_capacity(model, field_name):
    """Largest value a DecimalField of `model` can store."""
    field = model._meta.get_field(field_name)
    step = Decimal(10) ** -field.decimal_places
    return Decimal(10) ** (field.max_digits - field.decimal_places) - step


class EscrowAccount(models.Model):
    """
    Running escrow totals of a single project.

    Invariant: held_amount + released_amount == total_funded, and neither
    balance is negative. `total_funded` only grows. The invariant is checked
    before every save; a violation aborts the surrounding transaction.
    """
    project = models.OneToOneField(Project, on_delete=models.PROTECT, related_name='escrow_account')
    total_funded = models.DecimalField(max_digits=14, decimal_places=2, default=ZERO)
    held_amount = models.DecimalField(max_digits=14, decimal_places=2, default=ZERO)
    released_amount = models.DecimalField(max_digits=14, decimal_places=2, default=ZERO)
    platform_fee_percent = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal('10.00'))
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    history = AuditlogHistoryField()

    class Meta:
        constraints = [
            models.CheckConstraint(condition=models.Q(total_funded__gte=0), name='escrow_total_funded_non_negative'),
            models.CheckConstraint(condition=models.Q(held_amount__gte=0), name='escrow_held_non_negative'),
            models.CheckConstraint(condition=models.Q(released_amount__gte=0), name='escrow_released_non_negative'),
        ]

    def __str__(self):
        return f"Escrow for {self.project.title} (held {self.held_amount} / released {self.released_amount})"

    def check_invariant(self):
        if self.held_amount < 0 or self.released_amount < 0:
            raise LedgerInvariantError(
                f"Negative balance on project {self.project_id}: held={self.held_amount} released={self.released_amount}"
            )
        if self.held_amount + self.released_amount != self.total_funded:
            raise LedgerInvariantError(
                f"Ledger mismatch on project {self.project_id}: "
                f"held={self.held_amount} + released={self.released_amount} != funded={self.total_funded}"
            )

    def save(self, *args, **kwargs):
        self.check_invariant()
        super().save(*args, **kwargs)

    def fund(self, amount):
        amount = to_money(amount)
        if amount <= 0:
            raise InvalidAmount("Funding amount must be greater than zero.")
        capacity = field_capacity(EscrowAccount, 'total_funded')
        if self.total_funded + amount > capacity:
            raise InvalidAmount(
                f"Funding of {amount} would take the escrow past its capacity of {capacity}."
            )
        self.total_funded += amount
        self.held_amount += amount
        return self

    def debit_held(self, amount):
        amount = to_money(amount)
        if amount > self.held_amount:
            raise InsufficientFunds(
                f"Release of {amount} exceeds the held balance of {self.held_amount}."
            )
        self.held_amount -= amount
        return self

    def credit_released(self, amount):
        self.released_amount += to_money(amount)
        return self


class ReleaseRequest(models.Model):
    """
    An expert's claim that a milestone is done and its payment should be released.

    Only `open` requests change state; approved, rejected and withdrawn
    requests are final. A milestone has at most one open request.
    """
    OPEN = 'open'
    APPROVED = 'approved'
    REJECTED = 'rejected'
    WITHDRAWN = 'withdrawn'
    STATUS_CHOICES = (
        (OPEN, 'Open'),
        (APPROVED, 'Approved'),
        (REJECTED, 'Rejected'),
        (WITHDRAWN, 'Withdrawn'),
    )

    milestone = models.ForeignKey(Milestone, on_delete=models.PROTECT, related_name='release_requests')
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    platform_fee = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    expert_receives = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    requested_by = models.ForeignKey(User, on_delete=models.PROTECT, related_name='release_requests')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=OPEN)
    approved_by = models.ForeignKey(User, on_delete=models.PROTECT, null=True, blank=True, related_name='approved_releases')
    rejected_by = models.ForeignKey(User, on_delete=models.PROTECT, null=True, blank=True, related_name='rejected_releases')
    reason = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    resolved_at = models.DateTimeField(null=True, blank=True)

    history = AuditlogHistoryField()

    class Meta:
        ordering = ['-created_at', '-id']
        constraints = [
            models.UniqueConstraint(
                fields=['milestone'],
                condition=models.Q(status='open'),
                name='one_open_release_per_milestone',
            ),
            models.CheckConstraint(condition=models.Q(amount__gt=0), name='release_amount_positive'),
        ]

    def __str__(self):
        return f"Release {self.amount} for milestone {self.milestone_id} [{self.status}]"

    @property
    def is_open(self):
        return self.status == self.OPEN

    def _resolve(self, status):
        if not self.is_open:
            raise InvalidStateTransition(f"Release request {self.pk} is already {self.status}.")
        self.status = status
        self.resolved_at = timezone.now()

    def mark_approved(self, user):
        self._resolve(self.APPROVED)
        self.approved_by = user

    def mark_rejected(self, user, reason=''):
        self._resolve(self.REJECTED)
        self.rejected_by = user
        self.reason = reason or ''

    def mark_withdrawn(self):
        self._resolve(self.WITHDRAWN)


class LedgerEntry(models.Model):
    """Append-only record of every funding and release applied to an escrow account."""
    FUNDING = 'funding'
    RELEASE = 'release'
    ENTRY_TYPE_CHOICES = (
        (FUNDING, 'Funding'),
        (RELEASE, 'Release'),
    )

    account = models.ForeignKey(EscrowAccount, on_delete=models.PROTECT, related_name='entries')
    entry_type = models.CharField(max_length=20, choices=ENTRY_TYPE_CHOICES)
    amount = models.DecimalField(max_digits=14, decimal_places=2)
    actor = models.ForeignKey(User, on_delete=models.PROTECT, related_name='ledger_entries')
    release_request = models.OneToOneField(
        ReleaseRequest,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='ledger_entry',
    )
    held_after = models.DecimalField(max_digits=14, decimal_places=2)
    released_after = models.DecimalField(max_digits=14, decimal_places=2)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at', '-id']
        verbose_name_plural = 'Ledger entries'

    def __str__(self):
        return f"{self.entry_type} of {self.amount} on {self.account}"


auditlog.register(EscrowAccount)
auditlog.register(ReleaseRequest)
