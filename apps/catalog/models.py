# apps/catalog/models.py
from django.core.exceptions import ObjectDoesNotExist
from django.db import models


class Product(models.Model):
    """
    One catalog item, keyed by the natural `unique_key` coming from supplier files.

    `updated_by_upload` is a historical pointer to the upload that last wrote the row.
    Uploads can be deleted without touching products, so the pointer may go stale;
    it is not enforced by the database and readers go through `last_upload`.
    """

    # Fields written from a catalog file row (everything except bookkeeping)
    CATALOG_FIELDS = (
        "product_title",
        "product_description",
        "style_number",
        "mainframe_color",
        "size",
        "color_name",
        "piece_price",
    )

    unique_key = models.CharField(max_length=255, unique=True)
    product_title = models.CharField(max_length=255, null=True, blank=True)
    product_description = models.TextField(null=True, blank=True)
    style_number = models.CharField(max_length=100, null=True, blank=True)
    mainframe_color = models.CharField(max_length=100, null=True, blank=True)
    size = models.CharField(max_length=50, null=True, blank=True)
    color_name = models.CharField(max_length=100, null=True, blank=True)
    piece_price = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)

    updated_by_upload = models.ForeignKey(
        "uploads.FileUpload",
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        null=True,
        blank=True,
        related_name="products",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-updated_at"]
        indexes = [
            models.Index(fields=["style_number"], name="catalog_pro_style_n_6f1c2a_idx"),
            models.Index(fields=["updated_at"], name="catalog_pro_updated_3b9e4d_idx"),
        ]

    def __str__(self):
        return f"{self.product_title or '-'} [{self.unique_key}]"

    @property
    def last_upload(self):
        """The upload that last wrote this product, or None if it has since been deleted."""
        if self.updated_by_upload_id is None:
            return None
        try:
            return self.updated_by_upload
        except ObjectDoesNotExist:
            return None
