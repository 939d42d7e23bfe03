"""
Root URLs.

Everything client-facing sits under /api/v1/: JWT endpoints in auth/,
order lifecycle in orders/, and checkout, balances, payouts, gateway
webhooks and scheduled-job triggers in payments/. The OpenAPI schema is
served at /schema/ and rendered by ReDoc at /.
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView

from core.views import health_check

admin.site.site_header = "Marketplace Settlement Admin"
admin.site.site_title = "Settlement Admin"
admin.site.index_title = "Orders, escrow, and payouts"

urlpatterns = [
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    path("health/", health_check, name="health_check"),
    path("admin/", admin.site.urls),
    path(
        "api/v1/",
        include(
            [
                path("auth/", include("authentication.urls")),
                path("orders/", include("orders.urls")),
                path("payments/", include("payments.urls")),
            ]
        ),
    ),
]
