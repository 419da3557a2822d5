from django.contrib import admin

from .models import EscrowAccount, LedgerEntry, ReleaseRequest


class ReadOnlyAdminMixin:
    """Escrow state is changed only through the escrow service."""

    def has_add_permission(self, request, obj=None):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(EscrowAccount)
class EscrowAccountAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ('id', 'project', 'total_funded', 'held_amount', 'released_amount', 'platform_fee_percent', 'updated_at')
    search_fields = ('project__title',)


@admin.register(ReleaseRequest)
class ReleaseRequestAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ('id', 'milestone', 'amount', 'platform_fee', 'expert_receives', 'status', 'requested_by', 'created_at', 'resolved_at')
    list_filter = ('status',)
    search_fields = ('milestone__title', 'requested_by__email')


@admin.register(LedgerEntry)
class LedgerEntryAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ('id', 'account', 'entry_type', 'amount', 'actor', 'held_after', 'released_after', 'created_at')
    list_filter = ('entry_type',)
    search_fields = ('account__project__title', 'actor__email')
