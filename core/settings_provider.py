from decimal import Decimal

from django.conf import settings as django_settings

from core.models import GarageSettings


def get_garage_settings() -> GarageSettings:
    garage_settings, _ = GarageSettings.objects.get_or_create(singleton_key=1)
    return garage_settings


def get_default_tax_rate() -> Decimal:
    configured = get_garage_settings().default_tax_rate
    if configured is None:
        return Decimal(str(getattr(django_settings, "GARAGE_DEFAULT_TAX_RATE", "18.00")))
    return Decimal(configured)


def get_business_profile() -> dict:
    garage_settings = get_garage_settings()
    return {
        "business_name": garage_settings.business_name,
        "phone": garage_settings.phone,
        "email": garage_settings.email,
        "address": garage_settings.address,
        "gst_number": garage_settings.gst_number,
        "currency": garage_settings.currency,
    }
