# apps/catalog/views.py
from rest_framework import filters, viewsets, permissions

from common.filters import SortDirectionFilter

from . import services
from .models import Product
from .serializers import ProductSerializer, ProductDetailSerializer


class ProductViewSet(viewsets.ReadOnlyModelViewSet):
    """
    GET /api/v1/products/?search=&sort=&direction=
    GET /api/v1/products/<id>/
    """
    permission_classes = [permissions.IsAuthenticated]
    filter_backends = [filters.SearchFilter, SortDirectionFilter]
    search_fields = services.SEARCH_FIELDS
    ordering_fields = services.ALLOWED_SORT_FIELDS
    ordering = [f"-{services.DEFAULT_SORT}"]

    def get_queryset(self):
        if self.action == "retrieve":
            return services.products_with_relations()
        return Product.objects.all()

    def get_serializer_class(self):
        if self.action == "retrieve":
            return ProductDetailSerializer
        return ProductSerializer

    def list(self, request, *args, **kwargs):
        response = super().list(request, *args, **kwargs)
        response.data["filters"] = services.get_filters(request.query_params)
        return response
