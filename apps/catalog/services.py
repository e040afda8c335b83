# apps/catalog/services.py
import enum
import logging
from typing import Any, Dict, Mapping, Optional

from django.db import transaction
from django.db.models import QuerySet

from .models import Product

logger = logging.getLogger(__name__)

SEARCH_FIELDS = (
    "unique_key",
    "product_title",
    "product_description",
    "style_number",
    "color_name",
    "mainframe_color",
    "size",
)

ALLOWED_SORT_FIELDS = (
    "unique_key",
    "product_title",
    "style_number",
    "piece_price",
    "created_at",
    "updated_at",
)

DEFAULT_SORT = "updated_at"
DEFAULT_DIRECTION = "desc"


class UpsertOutcome(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


def changed_fields(product: Product, values: Mapping[str, Any]) -> Dict[str, Dict[str, Any]]:
    """Return {field: {"old", "new"}} for every catalog field whose stored value differs."""
    changes = {}
    for field, value in values.items():
        current = getattr(product, field)
        if current != value:
            changes[field] = {"old": current, "new": value}
    return changes


@transaction.atomic
def upsert_product(unique_key: str, values: Mapping[str, Any], upload_id=None) -> UpsertOutcome:
    """
    Insert or update the product for `unique_key` in one transaction.

    The row is fetched with a lock (or created under the unique constraint on
    `unique_key`; a concurrent insert makes get_or_create re-read the winner), so two
    workers ingesting the same key serialize instead of losing an update.

    Only catalog fields count as a change. When nothing differs the bookkeeping
    pointer and timestamp are still refreshed.
    """
    unknown = set(values) - set(Product.CATALOG_FIELDS)
    if unknown:
        raise ValueError(f"Unknown catalog fields: {sorted(unknown)}")

    product, created = Product.objects.select_for_update().get_or_create(
        unique_key=unique_key,
        defaults={**values, "updated_by_upload_id": upload_id},
    )
    if created:
        return UpsertOutcome.CREATED

    changes = changed_fields(product, values)
    product.updated_by_upload_id = upload_id
    if not changes:
        product.save(update_fields=["updated_by_upload", "updated_at"])
        return UpsertOutcome.UNCHANGED

    for field, value in values.items():
        setattr(product, field, value)
    product.save()
    logger.debug(
        "Updated existing product",
        extra={"unique_key": unique_key, "product_id": product.pk, "changed_fields": list(changes)},
    )
    return UpsertOutcome.UPDATED


def get_product(unique_key: str) -> Optional[Product]:
    return Product.objects.filter(unique_key=unique_key).first()


def get_filters(params: Mapping[str, Any]) -> Dict[str, str]:
    return {
        "search": params.get("search", ""),
        "sort": params.get("sort", DEFAULT_SORT),
        "direction": params.get("direction", DEFAULT_DIRECTION),
    }


def products_with_relations() -> QuerySet:
    return Product.objects.select_related("updated_by_upload__user")
