from django.db import models
from django.contrib.auth import get_user_model
from auditlog.registry import auditlog
from auditlog.models import AuditlogHistoryField

from escrow.exceptions import InvalidStateTransition

User = get_user_model()


class Project(models.Model):
    STATUS_CHOICES = (
            ('pending', 'Pending'),
            ('active', 'Active'),
            ('completed', 'Completed'),
            ('cancelled', 'Cancelled'),
        )

    client = models.ForeignKey(User, related_name='client_projects', on_delete=models.PROTECT)
    expert = models.ForeignKey(User, related_name='expert_projects', on_delete=models.PROTECT, null=True, blank=True)
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='active')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.title} ({self.client} -> {self.expert})"


class Milestone(models.Model):
    """
    A unit of project work with a payment amount.

    Milestones are defined during project setup; afterwards only the escrow
    service moves them through their lifecycle, and a completed milestone is
    never changed again.
    """
    PENDING = 'pending'
    IN_PROGRESS = 'in_progress'
    PENDING_RELEASE = 'pending_release'
    COMPLETED = 'completed'
    STATUS_CHOICES = (
        (PENDING, 'Pending'),
        (IN_PROGRESS, 'In Progress'),
        (PENDING_RELEASE, 'Pending Release'),
        (COMPLETED, 'Completed'),
    )

    project = models.ForeignKey(Project, on_delete=models.PROTECT, related_name="milestones")
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    due_date = models.DateField(null=True, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=PENDING)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    history = AuditlogHistoryField()

    class Meta:
        ordering = ['due_date', 'id']
        constraints = [
            models.CheckConstraint(condition=models.Q(amount__gt=0), name='milestone_amount_positive'),
        ]

    def __str__(self):
        return f"{self.title} [{self.status}] ({self.amount})"

    def save(self, *args, **kwargs):
        if self.pk is not None:
            self._check_mutable()
        super().save(*args, **kwargs)

    def _check_mutable(self):
        stored = Milestone.objects.filter(pk=self.pk).values('status', 'amount').first()
        if stored is None:
            return
        if stored['status'] == self.COMPLETED:
            raise InvalidStateTransition(f"Milestone {self.pk} is completed and can no longer change.")
        # an open release request was sized against this amount
        if stored['status'] == self.PENDING_RELEASE and self.amount != stored['amount']:
            raise InvalidStateTransition(f"Milestone {self.pk} is awaiting release; its amount is locked.")


auditlog.register(Milestone)
