from rest_framework import serializers

from projects.serializers import MilestoneSerializer
from .models import EscrowAccount, LedgerEntry, ReleaseRequest


class EscrowAccountSerializer(serializers.ModelSerializer):
    project_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = EscrowAccount
        fields = (
            "project_id",
            "total_funded",
            "held_amount",
            "released_amount",
            "platform_fee_percent",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields


class EscrowSnapshotSerializer(serializers.Serializer):
    """Ledger totals plus the project's milestones, each with its derived `release_id`."""

    def to_representation(self, snapshot):
        data = EscrowAccountSerializer(snapshot.account).data
        data["milestones"] = MilestoneSerializer(
            snapshot.milestones,
            many=True,
            context={"release_ids": snapshot.release_ids},
        ).data
        return data


class ReleaseRequestSerializer(serializers.ModelSerializer):
    milestone_id = serializers.IntegerField(read_only=True)
    milestone_title = serializers.CharField(source="milestone.title", read_only=True)
    requested_by = serializers.IntegerField(source="requested_by_id", read_only=True)
    approved_by = serializers.IntegerField(source="approved_by_id", read_only=True)
    rejected_by = serializers.IntegerField(source="rejected_by_id", read_only=True)

    class Meta:
        model = ReleaseRequest
        fields = (
            "id",
            "milestone_id",
            "milestone_title",
            "amount",
            "platform_fee",
            "expert_receives",
            "status",
            "requested_by",
            "approved_by",
            "rejected_by",
            "reason",
            "created_at",
            "resolved_at",
        )
        read_only_fields = fields


class LedgerEntrySerializer(serializers.ModelSerializer):
    actor_id = serializers.IntegerField(read_only=True)
    actor_email = serializers.EmailField(source="actor.email", read_only=True)
    release_id = serializers.IntegerField(source="release_request_id", read_only=True)

    class Meta:
        model = LedgerEntry
        fields = (
            "id",
            "entry_type",
            "amount",
            "actor_id",
            "actor_email",
            "release_id",
            "held_after",
            "released_after",
            "created_at",
        )
        read_only_fields = fields


class FundEscrowSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=14, decimal_places=2)


class RequestReleaseSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)


class RejectReleaseSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=2000, default="")
