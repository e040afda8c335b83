# apps/catalog/serializers.py
from rest_framework import serializers

from .models import Product


class ProductSerializer(serializers.ModelSerializer):
    piece_price = serializers.DecimalField(max_digits=12, decimal_places=2, coerce_to_string=True, read_only=True)

    class Meta:
        model = Product
        fields = (
            "id", "unique_key", "product_title", "product_description", "style_number",
            "mainframe_color", "size", "color_name", "piece_price", "updated_by_upload_id",
            "created_at", "updated_at",
        )
        read_only_fields = fields


class ProductDetailSerializer(ProductSerializer):
    updated_by_upload = serializers.SerializerMethodField()

    class Meta(ProductSerializer.Meta):
        fields = ProductSerializer.Meta.fields + ("updated_by_upload",)
        read_only_fields = fields

    def get_updated_by_upload(self, obj):
        upload = obj.last_upload
        if upload is None:
            return None
        return {
            "id": upload.id,
            "original_name": upload.original_name,
            "filename": upload.filename,
            "status": upload.status,
            "processed_at": upload.processed_at,
            "user": upload.owner_summary(),
        }
