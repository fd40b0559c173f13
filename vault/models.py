from django.db import models


class VaultState(models.Model):
    """Global settings of one vault: custody address, asset, treasury and fee."""

    address = models.CharField(max_length=42, unique=True)
    asset = models.CharField(max_length=42)
    treasury = models.CharField(max_length=42)
    protocol_fee_bps = models.PositiveIntegerField(default=100)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.address


class VaultRole(models.Model):
    class Role(models.TextChoices):
        ADMIN = 'admin', 'Admin'
        FACILITATOR = 'facilitator', 'Facilitator'

    vault = models.ForeignKey(VaultState, on_delete=models.CASCADE, related_name='roles')
    account = models.CharField(max_length=42)
    role = models.CharField(max_length=16, choices=Role.choices)
    granted_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['vault', 'account', 'role'], name='unique_vault_role'),
        ]


class AuthorProfile(models.Model):
    class Tier(models.IntegerChoices):
        TIER0 = 0, 'Tier 0'
        TIER1 = 1, 'Tier 1'
        CERTIFIED = 2, 'Certified'

    vault = models.ForeignKey(VaultState, on_delete=models.CASCADE, related_name='authors')
    recipient = models.CharField(max_length=42)
    tier = models.PositiveSmallIntegerField(choices=Tier.choices, default=Tier.TIER0)
    available_balance = models.CharField(max_length=78, default='0')
    locked_balance = models.CharField(max_length=78, default='0')
    # Meaningful only while locked_balance > 0.
    unlock_time = models.BigIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['vault', 'recipient'], name='unique_vault_author'),
        ]


class VaultEvent(models.Model):
    class Name(models.TextChoices):
        PAYMENT_SETTLED = 'PaymentSettled', 'Payment settled'
        REVENUE_CLAIMED = 'RevenueClaimed', 'Revenue claimed'
        TIER_UPDATED = 'TierUpdated', 'Tier updated'
        TREASURY_UPDATED = 'TreasuryUpdated', 'Treasury updated'
        PROTOCOL_FEE_UPDATED = 'ProtocolFeeUpdated', 'Protocol fee updated'

    vault = models.ForeignKey(VaultState, on_delete=models.CASCADE, related_name='events')
    name = models.CharField(max_length=32, choices=Name.choices)
    args = models.JSONField(default=dict)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['id']


class TokenBalance(models.Model):
    """Balance sheet of the in-process settlement token."""

    asset = models.CharField(max_length=42)
    holder = models.CharField(max_length=42)
    balance = models.CharField(max_length=78, default='0')

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['asset', 'holder'], name='unique_token_balance'),
        ]


class TokenAllowance(models.Model):
    asset = models.CharField(max_length=42)
    owner = models.CharField(max_length=42)
    spender = models.CharField(max_length=42)
    amount = models.CharField(max_length=78, default='0')

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['asset', 'owner', 'spender'], name='unique_token_allowance'),
        ]


class TokenAuthorization(models.Model):
    """A consumed EIP-3009 nonce."""

    asset = models.CharField(max_length=42)
    authorizer = models.CharField(max_length=42)
    nonce = models.CharField(max_length=66)
    used_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['asset', 'authorizer', 'nonce'], name='unique_token_authorization'),
        ]


class LedgerTransaction(models.Model):
    """Receipt of a call executed against the in-process ledger."""

    tx_hash = models.CharField(max_length=66, unique=True)
    method = models.CharField(max_length=64)
    sender = models.CharField(max_length=42)
    status = models.PositiveSmallIntegerField()
    revert_reason = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['id']
