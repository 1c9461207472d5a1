from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand

from core.settings_provider import get_garage_settings
from garage.models import Customer, Vehicle, Worker
from inventory.models import InventoryItem
from inventory.services import create_inventory_item

DEMO_ITEMS = [
    {
        "part_number": "BP-FR-001",
        "name": "Brake Pad (front)",
        "category": "Brakes",
        "brand": "Bosch",
        "opening_stock": 20,
        "minimum_stock": 5,
        "purchase_price": Decimal("650.00"),
        "selling_price": Decimal("900.00"),
    },
    {
        "part_number": "OF-STD-010",
        "name": "Oil Filter",
        "category": "Filters",
        "brand": "Mahle",
        "opening_stock": 40,
        "minimum_stock": 10,
        "purchase_price": Decimal("180.00"),
        "selling_price": Decimal("250.00"),
    },
    {
        "part_number": "EO-5W30-1L",
        "name": "Engine Oil 5W-30 (1L)",
        "category": "Lubricants",
        "brand": "Castrol",
        "unit": "LTR",
        "opening_stock": 8,
        "minimum_stock": 10,
        "purchase_price": Decimal("420.00"),
        "selling_price": Decimal("560.00"),
    },
]


class Command(BaseCommand):
    help = "Seed a small demo garage for local development."

    def handle(self, *args, **options):
        User = get_user_model()

        credentials = []
        for username, role, password in [
            ("admin", User.Role.ADMIN, "admin1234"),
            ("advisor", User.Role.ADVISOR, "advisor1234"),
            ("technician", User.Role.TECHNICIAN, "technician1234"),
        ]:
            user, created = User.objects.get_or_create(
                username=username,
                defaults={
                    "email": f"{username}@example.com",
                    "role": role,
                    "is_staff": role == User.Role.ADMIN,
                    "is_superuser": role == User.Role.ADMIN,
                    "is_active": True,
                },
            )
            if created:
                user.set_password(password)
                user.save(update_fields=["password"])
            credentials.append(f"{username}/{password}")

        garage_settings = get_garage_settings()
        if garage_settings.business_name == "My Garage":
            garage_settings.business_name = "Demo Auto Works"
            garage_settings.phone = "+91 98765 43210"
            garage_settings.address = "12 Service Road, Pune"
            garage_settings.save()

        customer, _ = Customer.objects.get_or_create(
            phone="+919800000001",
            defaults={"name": "Demo Customer", "email": "customer@example.com"},
        )
        vehicle, _ = Vehicle.objects.get_or_create(
            registration_number="MH12AB1234",
            defaults={
                "customer": customer,
                "make": "Maruti",
                "model": "Swift",
                "year": 2019,
                "fuel_type": Vehicle.FuelType.PETROL,
                "current_kilometers": 42000,
            },
        )
        Worker.objects.get_or_create(
            phone="+919800000101",
            defaults={"name": "Ravi Kumar", "role": Worker.Role.MECHANIC, "specialization": "Brakes and suspension"},
        )

        for item_fields in DEMO_ITEMS:
            if InventoryItem.objects.filter(part_number=item_fields["part_number"]).exists():
                continue
            fields = dict(item_fields)
            create_inventory_item(
                part_number=fields.pop("part_number"),
                name=fields.pop("name"),
                opening_stock=fields.pop("opening_stock"),
                **fields,
            ).unwrap()

        self.stdout.write(self.style.SUCCESS("Demo garage seeded successfully."))
        self.stdout.write(f"Credentials: {', '.join(credentials)}")
        self.stdout.write(f"Customer: {customer.name} | Vehicle: {vehicle.registration_number}")
