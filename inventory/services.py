import logging

from django.db.models import F
from django.utils import timezone

from common.errors import InsufficientStockError, NotFoundError, ValidationError
from common.results import returns_result
from common.unit_of_work import UnitOfWork
from common.utils import to_money
from inventory.models import InventoryItem, StockTransaction

logger = logging.getLogger("garage.engine")

ITEM_FIELDS = (
    "description",
    "category",
    "brand",
    "unit",
    "minimum_stock",
    "purchase_price",
    "selling_price",
    "location",
    "is_active",
)


def _reference_fields(reference):
    if reference is None:
        return {"source_ref_type": None, "source_ref_id": None}
    return {
        "source_ref_type": reference._meta.label_lower,
        "source_ref_id": str(reference.pk),
    }


class InventoryStockGuard:
    """The only writer of ``InventoryItem.current_stock``.

    Every change locks the item row, checks the result never goes negative and
    records a ``StockTransaction`` inside the caller's unit of work.
    """

    def __init__(self, uow: UnitOfWork):
        self.uow = uow

    def debit(self, item_id, quantity: int, *, kind, reference=None, notes: str = "") -> int:
        item = self._lock(item_id, quantity)
        new_stock = item.current_stock - quantity
        if new_stock < 0:
            raise InsufficientStockError(item.name, item.current_stock, quantity)
        return self._write(item, new_stock, -quantity, kind, reference, notes)

    def credit(self, item_id, quantity: int, *, kind, reference=None, notes: str = "") -> int:
        item = self._lock(item_id, quantity)
        new_stock = item.current_stock + quantity
        if kind == StockTransaction.Kind.PURCHASE:
            item.last_restock_date = timezone.now()
        return self._write(item, new_stock, quantity, kind, reference, notes)

    def _lock(self, item_id, quantity):
        self.uow.ensure_active()
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError("Quantity must be greater than zero")
        try:
            return InventoryItem.objects.select_for_update().get(pk=item_id)
        except InventoryItem.DoesNotExist as exc:
            raise NotFoundError("inventory item", "Inventory item not found") from exc

    def _write(self, item, new_stock, signed_quantity, kind, reference, notes):
        item.current_stock = new_stock
        item.save(update_fields=["current_stock", "last_restock_date", "updated_at"])
        StockTransaction.objects.create(
            item=item,
            quantity=signed_quantity,
            kind=kind,
            balance_after=new_stock,
            notes=notes or "",
            **_reference_fields(reference),
        )
        logger.info(
            "stock_%s kind=%s quantity=%s balance=%s",
            "debited" if signed_quantity < 0 else "credited",
            kind,
            abs(signed_quantity),
            new_stock,
            extra={"item_id": str(item.id)},
        )
        return new_stock


def _validate_item_fields(fields):
    for price_field in ("purchase_price", "selling_price"):
        if price_field in fields and fields[price_field] is not None:
            fields[price_field] = to_money(fields[price_field])
            if fields[price_field] < 0:
                raise ValidationError(f"{price_field.replace('_', ' ').capitalize()} cannot be negative")
    if "minimum_stock" in fields and fields["minimum_stock"] is not None and fields["minimum_stock"] < 0:
        raise ValidationError("Minimum stock cannot be negative")
    return fields


@returns_result
def create_inventory_item(*, part_number, name, opening_stock=0, **fields):
    part_number = (part_number or "").strip()
    name = (name or "").strip()
    if not part_number:
        raise ValidationError("Part number is required")
    if not name:
        raise ValidationError("Item name is required")
    if opening_stock < 0:
        raise ValidationError("Opening stock cannot be negative")
    unknown = set(fields) - set(ITEM_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown inventory item fields: {', '.join(sorted(unknown))}")

    with UnitOfWork() as uow:
        if InventoryItem.objects.filter(part_number__iexact=part_number).exists():
            raise ValidationError(f"Part number {part_number} already exists")
        item = InventoryItem.objects.create(
            part_number=part_number,
            name=name,
            current_stock=0,
            **_validate_item_fields(fields),
        )
        if opening_stock:
            InventoryStockGuard(uow).credit(item.id, opening_stock, kind=StockTransaction.Kind.OPENING)
            item.refresh_from_db()
    logger.info("inventory_item_created part_number=%s", item.part_number, extra={"item_id": str(item.id)})
    return item


@returns_result
def receive_stock(item_id, quantity, *, purchase_price=None, notes=""):
    with UnitOfWork() as uow:
        InventoryStockGuard(uow).credit(item_id, quantity, kind=StockTransaction.Kind.PURCHASE, notes=notes)
        item = InventoryItem.objects.get(pk=item_id)
        if purchase_price is not None:
            item.purchase_price = _validate_item_fields({"purchase_price": purchase_price})["purchase_price"]
            item.save(update_fields=["purchase_price", "updated_at"])
    return item


@returns_result
def adjust_stock(item_id, delta, *, notes=""):
    if not delta:
        raise ValidationError("Adjustment quantity cannot be zero")
    with UnitOfWork() as uow:
        guard = InventoryStockGuard(uow)
        if delta > 0:
            guard.credit(item_id, delta, kind=StockTransaction.Kind.ADJUSTMENT, notes=notes)
        else:
            guard.debit(item_id, -delta, kind=StockTransaction.Kind.ADJUSTMENT, notes=notes)
        item = InventoryItem.objects.get(pk=item_id)
    return item


def low_stock_items():
    return InventoryItem.objects.filter(is_active=True, current_stock__lte=F("minimum_stock")).order_by("current_stock", "name")
