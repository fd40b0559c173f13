import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="VaultState",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("address", models.CharField(max_length=42, unique=True)),
                ("asset", models.CharField(max_length=42)),
                ("treasury", models.CharField(max_length=42)),
                ("protocol_fee_bps", models.PositiveIntegerField(default=100)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
        ),
        migrations.CreateModel(
            name="VaultRole",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("account", models.CharField(max_length=42)),
                ("role", models.CharField(choices=[("admin", "Admin"), ("facilitator", "Facilitator")], max_length=16)),
                ("granted_at", models.DateTimeField(auto_now_add=True)),
                ("vault", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="roles", to="vault.vaultstate")),
            ],
        ),
        migrations.AddConstraint(
            model_name="vaultrole",
            constraint=models.UniqueConstraint(fields=("vault", "account", "role"), name="unique_vault_role"),
        ),
        migrations.CreateModel(
            name="AuthorProfile",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("recipient", models.CharField(max_length=42)),
                ("tier", models.PositiveSmallIntegerField(choices=[(0, "Tier 0"), (1, "Tier 1"), (2, "Certified")], default=0)),
                ("available_balance", models.CharField(default="0", max_length=78)),
                ("locked_balance", models.CharField(default="0", max_length=78)),
                ("unlock_time", models.BigIntegerField(default=0)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("vault", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="authors", to="vault.vaultstate")),
            ],
        ),
        migrations.AddConstraint(
            model_name="authorprofile",
            constraint=models.UniqueConstraint(fields=("vault", "recipient"), name="unique_vault_author"),
        ),
        migrations.CreateModel(
            name="VaultEvent",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(choices=[
                    ("PaymentSettled", "Payment settled"),
                    ("RevenueClaimed", "Revenue claimed"),
                    ("TierUpdated", "Tier updated"),
                    ("TreasuryUpdated", "Treasury updated"),
                    ("ProtocolFeeUpdated", "Protocol fee updated"),
                ], max_length=32)),
                ("args", models.JSONField(default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("vault", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="events", to="vault.vaultstate")),
            ],
            options={
                "ordering": ["id"],
            },
        ),
        migrations.CreateModel(
            name="TokenBalance",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("asset", models.CharField(max_length=42)),
                ("holder", models.CharField(max_length=42)),
                ("balance", models.CharField(default="0", max_length=78)),
            ],
        ),
        migrations.AddConstraint(
            model_name="tokenbalance",
            constraint=models.UniqueConstraint(fields=("asset", "holder"), name="unique_token_balance"),
        ),
        migrations.CreateModel(
            name="TokenAllowance",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("asset", models.CharField(max_length=42)),
                ("owner", models.CharField(max_length=42)),
                ("spender", models.CharField(max_length=42)),
                ("amount", models.CharField(default="0", max_length=78)),
            ],
        ),
        migrations.AddConstraint(
            model_name="tokenallowance",
            constraint=models.UniqueConstraint(fields=("asset", "owner", "spender"), name="unique_token_allowance"),
        ),
        migrations.CreateModel(
            name="TokenAuthorization",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("asset", models.CharField(max_length=42)),
                ("authorizer", models.CharField(max_length=42)),
                ("nonce", models.CharField(max_length=66)),
                ("used_at", models.DateTimeField(auto_now_add=True)),
            ],
        ),
        migrations.AddConstraint(
            model_name="tokenauthorization",
            constraint=models.UniqueConstraint(fields=("asset", "authorizer", "nonce"), name="unique_token_authorization"),
        ),
        migrations.CreateModel(
            name="LedgerTransaction",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("tx_hash", models.CharField(max_length=66, unique=True)),
                ("method", models.CharField(max_length=64)),
                ("sender", models.CharField(max_length=42)),
                ("status", models.PositiveSmallIntegerField()),
                ("revert_reason", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "ordering": ["id"],
            },
        ),
    ]
