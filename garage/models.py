import uuid

from django.db import models
from django.db.models import Q


class Customer(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    phone = models.CharField(max_length=32)
    email = models.EmailField(null=True, blank=True)
    address = models.TextField(blank=True)
    gst_number = models.CharField(max_length=32, blank=True)
    notes = models.TextField(blank=True)
    total_spent = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    loyalty_points = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        indexes = [
            models.Index(fields=["phone"], name="garage_customer_phone_idx"),
            models.Index(fields=["name"], name="garage_customer_name_idx"),
        ]

    def __str__(self):
        return self.name


class Vehicle(models.Model):
    class FuelType(models.TextChoices):
        PETROL = "petrol", "Petrol"
        DIESEL = "diesel", "Diesel"
        CNG = "cng", "CNG"
        ELECTRIC = "electric", "Electric"
        HYBRID = "hybrid", "Hybrid"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    customer = models.ForeignKey(Customer, on_delete=models.PROTECT, related_name="vehicles")
    registration_number = models.CharField(max_length=32, unique=True)
    make = models.CharField(max_length=64)
    model = models.CharField(max_length=64)
    year = models.PositiveIntegerField(null=True, blank=True)
    color = models.CharField(max_length=32, blank=True)
    fuel_type = models.CharField(max_length=16, choices=FuelType.choices, default=FuelType.PETROL)
    current_kilometers = models.PositiveIntegerField(default=0)
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["customer"], name="garage_vehicle_customer_idx"),
        ]

    def save(self, *args, **kwargs):
        if self.registration_number:
            self.registration_number = self.registration_number.strip().upper()
        super().save(*args, **kwargs)

    def __str__(self):
        return self.registration_number


class Worker(models.Model):
    class Role(models.TextChoices):
        MECHANIC = "mechanic", "Mechanic"
        ELECTRICIAN = "electrician", "Electrician"
        PAINTER = "painter", "Painter"
        WELDER = "welder", "Welder"
        HELPER = "helper", "Helper"
        SUPERVISOR = "supervisor", "Supervisor"
        MANAGER = "manager", "Manager"

    class Status(models.TextChoices):
        ACTIVE = "active", "Active"
        ON_LEAVE = "on_leave", "On leave"
        RESIGNED = "resigned", "Resigned"
        TERMINATED = "terminated", "Terminated"
        INACTIVE = "inactive", "Inactive"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    phone = models.CharField(max_length=32)
    email = models.EmailField(null=True, blank=True)
    role = models.CharField(max_length=16, choices=Role.choices, default=Role.MECHANIC)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.ACTIVE)
    specialization = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        indexes = [
            models.Index(fields=["status", "role"], name="garage_worker_status_role_idx"),
        ]

    def __str__(self):
        return self.name


class JobCard(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        IN_PROGRESS = "in_progress", "In progress"
        COMPLETED = "completed", "Completed"
        DELIVERED = "delivered", "Delivered"
        CANCELLED = "cancelled", "Cancelled"

    class Priority(models.TextChoices):
        LOW = "low", "Low"
        NORMAL = "normal", "Normal"
        HIGH = "high", "High"
        URGENT = "urgent", "Urgent"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    job_card_number = models.CharField(max_length=32, unique=True)
    vehicle = models.ForeignKey(Vehicle, on_delete=models.PROTECT, related_name="job_cards")
    assigned_technician = models.ForeignKey(
        Worker,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="job_cards",
    )
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    priority = models.CharField(max_length=16, choices=Priority.choices, default=Priority.NORMAL)
    current_kilometers = models.PositiveIntegerField(default=0)
    customer_complaints = models.TextField()
    mechanic_observations = models.TextField(blank=True)
    estimated_completion_date = models.DateTimeField(null=True, blank=True)
    actual_completion_date = models.DateTimeField(null=True, blank=True)
    delivery_date = models.DateTimeField(null=True, blank=True)
    labor_cost = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    parts_cost = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total_cost = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    discount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    final_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["status", "created_at"], name="garage_jobcard_status_idx"),
            models.Index(fields=["vehicle", "created_at"], name="garage_jobcard_vehicle_idx"),
            models.Index(fields=["created_at"], name="garage_jobcard_created_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=Q(discount__gte=0), name="garage_jobcard_discount_non_negative"),
        ]

    def __str__(self):
        return self.job_card_number


class JobCardService(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    job_card = models.ForeignKey(JobCard, on_delete=models.CASCADE, related_name="services")
    service_name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    quantity = models.PositiveIntegerField(default=1)
    labor_cost = models.DecimalField(max_digits=12, decimal_places=2)
    total_cost = models.DecimalField(max_digits=12, decimal_places=2)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at"]


class JobCardPart(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    job_card = models.ForeignKey(JobCard, on_delete=models.CASCADE, related_name="parts")
    item = models.ForeignKey("inventory.InventoryItem", on_delete=models.PROTECT, related_name="job_card_parts")
    part_name = models.CharField(max_length=255)
    part_number = models.CharField(max_length=64)
    quantity = models.PositiveIntegerField()
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)
    total_price = models.DecimalField(max_digits=12, decimal_places=2)
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at"]
