from django.contrib import admin
from django.urls import path, include
from drf_spectacular.views import (
    SpectacularAPIView,
    SpectacularSwaggerView,
    SpectacularRedocView,
)
from rest_framework_simplejwt.views import (
    TokenObtainPairView,   # POST: username/password -> { access, refresh }
    TokenRefreshView,      # POST: { refresh } -> { access }
    TokenVerifyView,       # POST: { token } -> {} if valid
)

urlpatterns = [
    path("admin/", admin.site.urls),

    # --- Versioned app routes ---
    path("api/v1/", include("apps.uploads.urls")),
    path("api/v1/", include("apps.catalog.urls")),

    # --- JWT auth endpoints (SimpleJWT) ---
    path("api/v1/auth/jwt/create/", TokenObtainPairView.as_view(), name="jwt-create"),
    path("api/v1/auth/jwt/refresh/", TokenRefreshView.as_view(), name="jwt-refresh"),
    path("api/v1/auth/jwt/verify/", TokenVerifyView.as_view(), name="jwt-verify"),

    # --- OpenAPI / Docs ---
    path("api/schema/", SpectacularAPIView.as_view(), name="schema"),
    path("api/docs/", SpectacularSwaggerView.as_view(url_name="schema"), name="swagger-ui"),
    path("api/docs/redoc/", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
]
