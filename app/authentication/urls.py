"""
URL configuration for authentication app.

URL structure:
    /api/v1/auth/token/           - Obtain access/refresh pair (email + password)
    /api/v1/auth/token/refresh/   - Rotate a refresh token
    /api/v1/auth/token/verify/    - Verify a token signature and expiry

All other APIs authenticate with the access token as
"Authorization: Bearer <token>"; JWTAuthentication verifies its signature
on every request.
"""

from django.urls import path
from rest_framework_simplejwt.views import (
    TokenObtainPairView,
    TokenRefreshView,
    TokenVerifyView,
)

app_name = "authentication"

urlpatterns = [
    path("token/", TokenObtainPairView.as_view(), name="token-obtain"),
    path("token/refresh/", TokenRefreshView.as_view(), name="token-refresh"),
    path("token/verify/", TokenVerifyView.as_view(), name="token-verify"),
]
