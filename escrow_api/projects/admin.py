from django.contrib import admin

from .models import Project, Milestone


class MilestoneInline(admin.TabularInline):
    """New milestones can be added here; existing ones change only through the escrow service."""
    model = Milestone
    extra = 0
    fields = ('title', 'amount', 'due_date', 'status')
    readonly_fields = ('status',)

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Project)
class ProjectAdmin(admin.ModelAdmin):
    list_display = ('id', 'title', 'client', 'expert', 'status', 'created_at')
    list_filter = ('status',)
    search_fields = ('title', 'client__email', 'expert__email')
    inlines = [MilestoneInline]


@admin.register(Milestone)
class MilestoneAdmin(admin.ModelAdmin):
    list_display = ('id', 'project', 'title', 'amount', 'due_date', 'status')
    list_filter = ('status',)
    search_fields = ('title', 'project__title')
    readonly_fields = ('status', 'started_at', 'completed_at')

    def get_readonly_fields(self, request, obj=None):
        fields = super().get_readonly_fields(request, obj)
        if obj is not None and obj.status not in (Milestone.PENDING, Milestone.IN_PROGRESS):
            fields = (*fields, 'amount')
        return fields

    def has_change_permission(self, request, obj=None):
        if obj is not None and obj.status == Milestone.COMPLETED:
            return False
        return super().has_change_permission(request, obj)

    def has_delete_permission(self, request, obj=None):
        if obj is not None and obj.status != Milestone.PENDING:
            return False
        return super().has_delete_permission(request, obj)
