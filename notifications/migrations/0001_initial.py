from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone
import uuid


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("deliveries", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="DeliveryNotification",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("kind", models.CharField(choices=[("customer_update", "Customer Update"), ("driver_assignment", "Driver Assignment")], default="customer_update", max_length=30)),
                ("status", models.CharField(max_length=30)),
                ("recipient", models.CharField(max_length=40)),
                ("message_sid", models.CharField(blank=True, max_length=64)),
                ("sent_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("delivery", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="notifications", to="deliveries.delivery")),
            ],
            options={
                "ordering": ["sent_at"],
                "indexes": [models.Index(fields=["delivery", "kind"], name="notif_delivery_kind_idx")],
            },
        ),
    ]
