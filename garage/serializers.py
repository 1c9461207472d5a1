from rest_framework import serializers

from garage.models import Customer, JobCard, JobCardPart, JobCardService, Vehicle, Worker


class CustomerSerializer(serializers.ModelSerializer):
    class Meta:
        model = Customer
        fields = [
            "id",
            "name",
            "phone",
            "email",
            "address",
            "gst_number",
            "notes",
            "total_spent",
            "loyalty_points",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "total_spent", "loyalty_points", "created_at", "updated_at"]

    def validate_name(self, value):
        if not value.strip():
            raise serializers.ValidationError("Customer name is required.")
        return value.strip()


class VehicleSerializer(serializers.ModelSerializer):
    customer_name = serializers.CharField(source="customer.name", read_only=True)

    class Meta:
        model = Vehicle
        fields = [
            "id",
            "customer",
            "customer_name",
            "registration_number",
            "make",
            "model",
            "year",
            "color",
            "fuel_type",
            "current_kilometers",
            "notes",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]

    def validate_registration_number(self, value):
        normalized = value.strip().upper()
        qs = Vehicle.objects.filter(registration_number=normalized)
        if self.instance is not None:
            qs = qs.exclude(pk=self.instance.pk)
        if qs.exists():
            raise serializers.ValidationError("A vehicle with this registration number already exists.")
        return normalized


class WorkerSerializer(serializers.ModelSerializer):
    class Meta:
        model = Worker
        fields = ["id", "name", "phone", "email", "role", "status", "specialization", "created_at", "updated_at"]
        read_only_fields = ["id", "created_at", "updated_at"]


class JobCardServiceSerializer(serializers.ModelSerializer):
    class Meta:
        model = JobCardService
        fields = ["id", "service_name", "description", "quantity", "labor_cost", "total_cost", "created_at"]
        read_only_fields = fields


class JobCardPartSerializer(serializers.ModelSerializer):
    class Meta:
        model = JobCardPart
        fields = ["id", "item", "part_name", "part_number", "quantity", "unit_price", "total_price", "notes", "created_at"]
        read_only_fields = fields


COST_FIELDS = ["labor_cost", "parts_cost", "total_cost", "discount", "final_amount"]


class JobCardSerializer(serializers.ModelSerializer):
    registration_number = serializers.CharField(source="vehicle.registration_number", read_only=True)
    customer_name = serializers.CharField(source="vehicle.customer.name", read_only=True)
    technician_name = serializers.CharField(source="assigned_technician.name", read_only=True, default=None)

    class Meta:
        model = JobCard
        fields = [
            "id",
            "job_card_number",
            "vehicle",
            "registration_number",
            "customer_name",
            "assigned_technician",
            "technician_name",
            "status",
            "priority",
            "current_kilometers",
            "customer_complaints",
            "mechanic_observations",
            "estimated_completion_date",
            "actual_completion_date",
            "delivery_date",
            *COST_FIELDS,
            "created_at",
            "updated_at",
        ]
        read_only_fields = [
            "id",
            "job_card_number",
            "vehicle",
            "status",
            "actual_completion_date",
            "delivery_date",
            *COST_FIELDS,
            "created_at",
            "updated_at",
        ]

    def validate_customer_complaints(self, value):
        if not value.strip():
            raise serializers.ValidationError("Customer complaints are required.")
        return value


class JobCardDetailSerializer(JobCardSerializer):
    vehicle_detail = VehicleSerializer(source="vehicle", read_only=True)
    technician = WorkerSerializer(source="assigned_technician", read_only=True)
    services = JobCardServiceSerializer(many=True, read_only=True)
    parts = JobCardPartSerializer(many=True, read_only=True)

    class Meta(JobCardSerializer.Meta):
        fields = JobCardSerializer.Meta.fields + ["vehicle_detail", "technician", "services", "parts"]
        read_only_fields = fields


class JobCardCreateSerializer(serializers.Serializer):
    vehicle = serializers.UUIDField()
    customer_complaints = serializers.CharField()
    current_kilometers = serializers.IntegerField(required=False, default=0)
    assigned_technician = serializers.UUIDField(required=False, allow_null=True, default=None)
    priority = serializers.ChoiceField(choices=JobCard.Priority.choices, required=False, default=JobCard.Priority.NORMAL)
    estimated_completion_date = serializers.DateTimeField(required=False, allow_null=True, default=None)


class JobCardStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=JobCard.Status.choices)


class AddServiceSerializer(serializers.Serializer):
    service_name = serializers.CharField(max_length=255)
    labor_cost = serializers.DecimalField(max_digits=12, decimal_places=2)
    quantity = serializers.IntegerField(required=False, default=1)
    description = serializers.CharField(required=False, allow_blank=True, default="")


class AddPartSerializer(serializers.Serializer):
    item = serializers.UUIDField()
    quantity = serializers.IntegerField()
    unit_price = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True, default=None)
    notes = serializers.CharField(required=False, allow_blank=True, default="")
