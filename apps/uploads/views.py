# apps/uploads/views.py
from rest_framework import mixins, permissions, status, viewsets
from rest_framework.exceptions import ValidationError
from rest_framework.generics import ListAPIView
from rest_framework.response import Response

from common.permissions import IsOwner

from . import services
from .exceptions import IntakeValidationError
from .models import FileUpload
from .serializers import FileUploadCreateSerializer, FileUploadDetailSerializer, FileUploadSerializer


class FileUploadViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.DestroyModelMixin,
    viewsets.GenericViewSet,
):
    """
    POST   /api/v1/file-uploads/        multipart `file`; stores it and enqueues processing
    GET    /api/v1/file-uploads/        the caller's uploads
    GET    /api/v1/file-uploads/<id>/   one upload with its products (owner only)
    DELETE /api/v1/file-uploads/<id>/   removes file and record (owner only)
    """
    permission_classes = [permissions.IsAuthenticated, IsOwner]
    pagination_class = None

    def get_queryset(self):
        if self.action == "list":
            return services.get_user_uploads(self.request.user)
        return FileUpload.objects.select_related("user").prefetch_related("products")

    def get_serializer_class(self):
        if self.action == "retrieve":
            return FileUploadDetailSerializer
        if self.action == "create":
            return FileUploadCreateSerializer
        return FileUploadSerializer

    def create(self, request, *args, **kwargs):
        serializer = FileUploadCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            upload = services.upload_file(serializer.validated_data["file"], user=request.user)
        except IntakeValidationError as exc:
            raise ValidationError({"file": [str(exc)]})
        return Response(FileUploadSerializer(upload).data, status=status.HTTP_202_ACCEPTED)

    def perform_destroy(self, instance):
        services.delete_upload(instance)


class FileManagerView(ListAPIView):
    """GET /api/v1/file-manager/: every upload with its owner and product count."""
    permission_classes = [permissions.IsAuthenticated]
    serializer_class = FileUploadSerializer
    pagination_class = None

    def get_queryset(self):
        return services.get_uploads_for_file_manager()
