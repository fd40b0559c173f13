from django.contrib import admin

from vault.models import AuthorProfile, LedgerTransaction, VaultEvent, VaultRole, VaultState


@admin.register(VaultState)
class VaultStateAdmin(admin.ModelAdmin):
    list_display = ('address', 'asset', 'treasury', 'protocol_fee_bps', 'updated_at')


@admin.register(VaultRole)
class VaultRoleAdmin(admin.ModelAdmin):
    list_display = ('vault', 'account', 'role', 'granted_at')
    list_filter = ('role',)


@admin.register(AuthorProfile)
class AuthorProfileAdmin(admin.ModelAdmin):
    list_display = ('recipient', 'tier', 'available_balance', 'locked_balance', 'unlock_time')
    list_filter = ('tier',)
    search_fields = ('recipient',)


@admin.register(VaultEvent)
class VaultEventAdmin(admin.ModelAdmin):
    list_display = ('name', 'vault', 'args', 'created_at')
    list_filter = ('name',)
    readonly_fields = ('vault', 'name', 'args', 'created_at')


@admin.register(LedgerTransaction)
class LedgerTransactionAdmin(admin.ModelAdmin):
    list_display = ('tx_hash', 'method', 'sender', 'status', 'created_at')
    list_filter = ('method', 'status')
    search_fields = ('tx_hash',)
