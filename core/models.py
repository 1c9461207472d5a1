import uuid
from decimal import Decimal

from django.conf import settings
from django.contrib.auth.models import AbstractUser
from django.db import models
from django.db.models import Q
from django.db.models.functions import Lower


class User(AbstractUser):
    class Role(models.TextChoices):
        TECHNICIAN = "technician", "Technician"
        ADVISOR = "advisor", "Service advisor"
        ADMIN = "admin", "Admin"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    email = models.EmailField(blank=True)
    role = models.CharField(max_length=32, choices=Role, default=Role.TECHNICIAN)

    class Meta(AbstractUser.Meta):
        constraints = [
            models.UniqueConstraint(
                Lower("email"),
                condition=~Q(email=""),
                name="core_user_email_ci_unique",
            )
        ]

    def save(self, *args, **kwargs):
        if self.email:
            self.email = self.email.strip().lower()
        super().save(*args, **kwargs)


class AuditLog(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    actor = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=64)
    entity = models.CharField(max_length=64)
    entity_id = models.CharField(max_length=64, null=True, blank=True)
    before_snapshot = models.JSONField(null=True, blank=True)
    after_snapshot = models.JSONField(null=True, blank=True)
    request_id = models.CharField(max_length=255, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["created_at"], name="core_audit_created_idx"),
            models.Index(fields=["action", "created_at"], name="core_audit_action_idx"),
            models.Index(fields=["entity", "created_at"], name="core_audit_entity_idx"),
            models.Index(fields=["actor", "created_at"], name="core_audit_actor_idx"),
        ]


def default_tax_rate():
    return Decimal(str(getattr(settings, "GARAGE_DEFAULT_TAX_RATE", "18.00")))


class GarageSettings(models.Model):
    """Business profile and billing defaults; a single row with ``singleton_key=1``."""

    singleton_key = models.PositiveSmallIntegerField(default=1, unique=True, editable=False)
    business_name = models.CharField(max_length=255, default="My Garage")
    phone = models.CharField(max_length=32, blank=True)
    email = models.EmailField(blank=True)
    address = models.TextField(blank=True)
    gst_number = models.CharField(max_length=32, blank=True)
    currency = models.CharField(max_length=8, default="INR")
    default_tax_rate = models.DecimalField(max_digits=5, decimal_places=2, default=default_tax_rate)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name_plural = "garage settings"

    def __str__(self):
        return self.business_name


class SequenceCounter(models.Model):
    prefix = models.CharField(max_length=16)
    day = models.DateField()
    last_value = models.PositiveIntegerField(default=0)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["prefix", "day"], name="core_sequence_prefix_day_uniq"),
        ]

    def __str__(self):
        return f"{self.prefix}:{self.day.isoformat()}={self.last_value}"
