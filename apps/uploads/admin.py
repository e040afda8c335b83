# apps/uploads/admin.py
from django.contrib import admin
from . import models


@admin.register(models.FileUpload)
class FileUploadAdmin(admin.ModelAdmin):
    list_display = ("id", "original_name", "user", "status", "processed_at", "created_at")
    search_fields = ("original_name", "filename", "file_hash")
    list_filter = ("status",)
    readonly_fields = ("file_hash", "processed_at", "created_at", "updated_at")
