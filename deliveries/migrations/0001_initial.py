from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone
import uuid


STATUS_CHOICES = [
    ("pending", "Pending"),
    ("assigned", "Assigned"),
    ("picked_up", "Picked Up"),
    ("in_transit", "In Transit"),
    ("out_for_delivery", "Out for Delivery"),
    ("delivered", "Delivered"),
    ("failed", "Failed"),
    ("cancelled", "Cancelled"),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Delivery",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("tracking_code", models.CharField(editable=False, max_length=32, unique=True)),
                ("customer_name", models.CharField(max_length=100)),
                ("customer_phone", models.CharField(max_length=20)),
                ("assigned_at", models.DateTimeField(blank=True, null=True)),
                ("pickup_address", models.JSONField()),
                ("delivery_address", models.JSONField()),
                ("package_details", models.JSONField()),
                ("status", models.CharField(choices=STATUS_CHOICES, default="pending", max_length=30)),
                ("estimated_pickup_time", models.DateTimeField(blank=True, null=True)),
                ("estimated_delivery_time", models.DateTimeField(blank=True, null=True)),
                ("actual_pickup_time", models.DateTimeField(blank=True, null=True)),
                ("actual_delivery_time", models.DateTimeField(blank=True, null=True)),
                ("price", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("payment_status", models.CharField(choices=[("pending", "Pending"), ("paid", "Paid"), ("refunded", "Refunded")], default="pending", max_length=20)),
                ("priority", models.CharField(choices=[("low", "Low"), ("medium", "Medium"), ("high", "High"), ("urgent", "Urgent")], default="medium", max_length=20)),
                ("special_instructions", models.TextField(blank=True)),
                ("internal_notes", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("customer", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="deliveries", to=settings.AUTH_USER_MODEL)),
                ("driver", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name="assigned_deliveries", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "verbose_name_plural": "deliveries",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status"], name="deliveries_status_idx"),
                    models.Index(fields=["-created_at"], name="deliveries_created_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="TimelineEntry",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("sequence", models.PositiveIntegerField()),
                ("status", models.CharField(choices=STATUS_CHOICES, max_length=30)),
                ("timestamp", models.DateTimeField(default=django.utils.timezone.now)),
                ("latitude", models.FloatField(blank=True, null=True)),
                ("longitude", models.FloatField(blank=True, null=True)),
                ("note", models.CharField(blank=True, max_length=500)),
                ("delivery", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="timeline", to="deliveries.delivery")),
            ],
            options={
                "verbose_name_plural": "timeline entries",
                "ordering": ["sequence"],
                "constraints": [
                    models.UniqueConstraint(fields=("delivery", "sequence"), name="deliveries_timeline_unique_sequence"),
                ],
            },
        ),
        migrations.CreateModel(
            name="ProofOfDelivery",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("photo", models.ImageField(blank=True, upload_to="deliveries/proof/%Y/%m/")),
                ("signature", models.TextField(blank=True)),
                ("received_by", models.CharField(blank=True, max_length=100)),
                ("notes", models.TextField(blank=True)),
                ("latitude", models.FloatField(blank=True, null=True)),
                ("longitude", models.FloatField(blank=True, null=True)),
                ("timestamp", models.DateTimeField(default=django.utils.timezone.now)),
                ("delivery", models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name="proof_of_delivery", to="deliveries.delivery")),
            ],
            options={
                "verbose_name_plural": "proofs of delivery",
            },
        ),
    ]
