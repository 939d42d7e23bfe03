"""
URL configuration for the orders app.

Routes:
    - POST /                                  - Create order
    - POST /<order_id>/confirm/               - Buyer confirmation
    - POST /<order_id>/dispute/               - Buyer dispute
    - POST /<order_id>/vendor/<action>/       - Vendor action
    - POST /<order_id>/resolve/               - Admin dispute resolution

All routes are prefixed with /api/v1/orders/ when included in the main URLconf.
"""

from django.urls import path

from orders import views

app_name = "orders"

urlpatterns = [
    path("", views.OrderCreateView.as_view(), name="create"),
    path("<uuid:order_id>/confirm/", views.OrderConfirmView.as_view(), name="confirm"),
    path("<uuid:order_id>/dispute/", views.OrderDisputeView.as_view(), name="dispute"),
    path("<uuid:order_id>/vendor/<str:action>/", views.VendorActionView.as_view(), name="vendor_action"),
    path("<uuid:order_id>/resolve/", views.ResolveDisputeView.as_view(), name="resolve"),
]
