from django.db import migrations, models


STATUS_CHOICES = [
    ("received", "Received"),
    ("validated", "Validated"),
    ("collected", "Collected"),
    ("approved", "Approved"),
    ("settled", "Settled"),
    ("failed", "Failed"),
]


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="PaymentAttempt",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("payer", models.CharField(max_length=42)),
                ("nonce", models.CharField(max_length=66)),
                ("pay_to", models.CharField(max_length=42)),
                ("recipient", models.CharField(blank=True, default="", max_length=42)),
                ("value", models.CharField(max_length=78)),
                ("network", models.CharField(max_length=32)),
                ("valid_after", models.DateTimeField()),
                ("valid_before", models.DateTimeField()),
                ("signature", models.CharField(max_length=132)),
                ("payment_request", models.JSONField()),
                ("status", models.CharField(choices=STATUS_CHOICES, default="received", max_length=16)),
                ("checkpoint", models.CharField(choices=STATUS_CHOICES, default="received", max_length=16)),
                ("collection_tx_hash", models.CharField(blank=True, max_length=66, null=True)),
                ("approval_tx_hash", models.CharField(blank=True, max_length=66, null=True)),
                ("settlement_tx_hash", models.CharField(blank=True, max_length=66, null=True)),
                ("error_kind", models.CharField(blank=True, default="", max_length=32)),
                ("error_message", models.TextField(blank=True, default="")),
                ("settled_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.AddConstraint(
            model_name="paymentattempt",
            constraint=models.UniqueConstraint(fields=("payer", "nonce"), name="unique_payment_attempt_nonce"),
        ),
        migrations.CreateModel(
            name="UserPolicyRecord",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("user_address", models.CharField(max_length=42, unique=True)),
                ("max_transaction_amount", models.CharField(max_length=78)),
                ("daily_spending_limit", models.CharField(max_length=78)),
                ("spent_today", models.CharField(default="0", max_length=78)),
                ("last_reset_timestamp", models.BigIntegerField()),
                ("authorized_merchants", models.JSONField(default=list)),
                ("authorized_domains", models.JSONField(default=list)),
                ("auto_pay_enabled", models.BooleanField(default=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["user_address"],
            },
        ),
        migrations.CreateModel(
            name="Merchant",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("address", models.CharField(max_length=42, unique=True)),
                ("name", models.CharField(max_length=128)),
                ("domain", models.CharField(max_length=253)),
                ("verified", models.BooleanField(default=False)),
                ("category", models.CharField(blank=True, default="", max_length=64)),
                ("max_transaction_limit", models.CharField(blank=True, max_length=78, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "ordering": ["name"],
            },
        ),
    ]
