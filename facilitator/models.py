from django.db import models
from django.utils import timezone


class PaymentAttempt(models.Model):
    """Checkpoint of one payment request, keyed by (payer, nonce)."""

    class Status(models.TextChoices):
        RECEIVED = 'received', 'Received'
        VALIDATED = 'validated', 'Validated'
        COLLECTED = 'collected', 'Collected'
        APPROVED = 'approved', 'Approved'
        SETTLED = 'settled', 'Settled'
        FAILED = 'failed', 'Failed'

    payer = models.CharField(max_length=42)
    nonce = models.CharField(max_length=66)
    pay_to = models.CharField(max_length=42)
    recipient = models.CharField(max_length=42, blank=True, default='')
    value = models.CharField(max_length=78)
    network = models.CharField(max_length=32)
    valid_after = models.DateTimeField()
    valid_before = models.DateTimeField()
    signature = models.CharField(max_length=132)
    payment_request = models.JSONField()
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.RECEIVED,
    )
    # Last step whose transaction was confirmed on-chain; resumption point.
    checkpoint = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.RECEIVED,
    )
    collection_tx_hash = models.CharField(max_length=66, blank=True, null=True)
    approval_tx_hash = models.CharField(max_length=66, blank=True, null=True)
    settlement_tx_hash = models.CharField(max_length=66, blank=True, null=True)
    error_kind = models.CharField(max_length=32, blank=True, default='')
    error_message = models.TextField(blank=True, default='')
    settled_at = models.DateTimeField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['payer', 'nonce'], name='unique_payment_attempt_nonce'),
        ]

    def reach(self, step: str, tx_hash: str = None) -> None:
        self.status = step
        self.checkpoint = step
        if step == self.Status.COLLECTED:
            self.collection_tx_hash = tx_hash
        elif step == self.Status.APPROVED:
            self.approval_tx_hash = tx_hash
        elif step == self.Status.SETTLED:
            self.settlement_tx_hash = tx_hash
            self.settled_at = timezone.now()
        self.error_kind = ''
        self.error_message = ''

    def mark_failed(self, kind: str, message: str) -> None:
        self.status = self.Status.FAILED
        self.error_kind = kind
        self.error_message = message


class UserPolicyRecord(models.Model):
    user_address = models.CharField(max_length=42, unique=True)
    max_transaction_amount = models.CharField(max_length=78)
    daily_spending_limit = models.CharField(max_length=78)
    spent_today = models.CharField(max_length=78, default='0')
    last_reset_timestamp = models.BigIntegerField()
    authorized_merchants = models.JSONField(default=list)
    authorized_domains = models.JSONField(default=list)
    auto_pay_enabled = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['user_address']


class Merchant(models.Model):
    address = models.CharField(max_length=42, unique=True)
    name = models.CharField(max_length=128)
    domain = models.CharField(max_length=253)
    verified = models.BooleanField(default=False)
    category = models.CharField(max_length=64, blank=True, default='')
    max_transaction_limit = models.CharField(max_length=78, blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['name']
