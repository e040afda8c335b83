# apps/uploads/urls.py
from rest_framework.routers import DefaultRouter
from django.urls import path, include
from .views import FileUploadViewSet, FileManagerView

router = DefaultRouter()
router.register(r"file-uploads", FileUploadViewSet, basename="file-upload")

urlpatterns = [
    path("file-manager/", FileManagerView.as_view(), name="file-manager"),
    path("", include(router.urls)),
]
