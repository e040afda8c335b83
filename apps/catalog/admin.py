# apps/catalog/admin.py
from django.contrib import admin
from . import models


@admin.register(models.Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ("unique_key", "product_title", "style_number", "color_name", "size", "piece_price", "updated_at")
    search_fields = ("unique_key", "product_title", "style_number", "color_name")
    list_filter = ("size",)
    readonly_fields = ("created_at", "updated_at", "updated_by_upload")
