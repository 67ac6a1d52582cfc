import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("orders", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="PaymentLog",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("payment_method", models.CharField(max_length=32)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("payment_id", models.CharField(blank=True, max_length=128, null=True)),
                ("paid_at", models.DateTimeField()),
                ("payment_notes", models.TextField(blank=True, null=True)),
                ("transaction_reference", models.CharField(blank=True, max_length=128, null=True)),
                ("bank_name", models.CharField(blank=True, max_length=128, null=True)),
                ("account_last_four", models.CharField(blank=True, max_length=4, null=True)),
                ("admin_id", models.BigIntegerField()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payment_logs",
                        to="orders.ordermodel",
                    ),
                ),
            ],
            options={
                "db_table": "payment_logs",
                "ordering": ["-created_at", "-id"],
            },
        ),
    ]
