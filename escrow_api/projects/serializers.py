from rest_framework import serializers

from .models import Milestone


class MilestoneSerializer(serializers.ModelSerializer):
    """
    Serializer outlining milestone progress.

    Fields (all read-only): id, project_id, title, description, amount, due_date,
    status, started_at, completed_at, release_id.

    `release_id` is the open release request of a milestone in `pending_release`,
    looked up from the `release_ids` mapping ({milestone_id: release_id}) in the
    serializer context. It is null for every other state.
    """
    project_id = serializers.IntegerField(read_only=True)
    release_id = serializers.SerializerMethodField()

    class Meta:
        model = Milestone
        fields = ['id', 'project_id', 'title', 'description', 'amount', 'due_date', 'status',
                  'started_at', 'completed_at', 'release_id']
        read_only_fields = fields

    def get_release_id(self, obj):
        if obj.status != Milestone.PENDING_RELEASE:
            return None
        return self.context.get('release_ids', {}).get(obj.id)
