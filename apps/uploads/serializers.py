# apps/uploads/serializers.py
from rest_framework import serializers

from .models import FileUpload


class FileUploadSerializer(serializers.ModelSerializer):
    user = serializers.SerializerMethodField()
    products_count = serializers.IntegerField(read_only=True, required=False)

    class Meta:
        model = FileUpload
        fields = [
            "id",
            "filename",
            "original_name",
            "file_path",
            "file_hash",
            "status",
            "processed_at",
            "error_message",
            "created_at",
            "updated_at",
            "user",
            "products_count",
        ]
        read_only_fields = fields

    def get_user(self, obj):
        summary = obj.owner_summary()
        if summary is not None:
            summary["email"] = obj.user.email
        return summary

    def to_representation(self, instance):
        data = super().to_representation(instance)
        # error detail only means something once the upload has failed
        if instance.status != FileUpload.Status.FAILED:
            data["error_message"] = None
        return data


class FileUploadDetailSerializer(FileUploadSerializer):
    products = serializers.SerializerMethodField()

    class Meta(FileUploadSerializer.Meta):
        fields = FileUploadSerializer.Meta.fields + ["products"]
        read_only_fields = fields

    def get_products(self, obj):
        return [
            {
                "id": product.id,
                "unique_key": product.unique_key,
                "product_title": product.product_title,
                "style_number": product.style_number,
                "piece_price": f"{product.piece_price:.2f}" if product.piece_price is not None else None,
            }
            for product in obj.products.all()
        ]


class FileUploadCreateSerializer(serializers.Serializer):
    file = serializers.FileField(write_only=True)
