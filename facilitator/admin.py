from django.contrib import admin

from facilitator.models import Merchant, PaymentAttempt, UserPolicyRecord


@admin.register(PaymentAttempt)
class PaymentAttemptAdmin(admin.ModelAdmin):
    list_display = ("nonce", "payer", "pay_to", "value", "status", "checkpoint", "created_at")
    list_filter = ("status", "checkpoint")
    search_fields = ("nonce", "payer", "pay_to", "collection_tx_hash", "settlement_tx_hash")


@admin.register(UserPolicyRecord)
class UserPolicyRecordAdmin(admin.ModelAdmin):
    list_display = ("user_address", "max_transaction_amount", "daily_spending_limit",
                    "spent_today", "auto_pay_enabled")
    list_filter = ("auto_pay_enabled",)
    search_fields = ("user_address",)


@admin.register(Merchant)
class MerchantAdmin(admin.ModelAdmin):
    list_display = ("name", "address", "domain", "verified", "category")
    list_filter = ("verified", "category")
    search_fields = ("name", "address", "domain")
