"""
URL configuration for the payments app.

Routes:
    - POST     /checkout/                          - Start checkout
    - POST     /delivery-fee/                      - Delivery-fee top-up
    - GET      /balance/                           - Vendor balance
    - POST     /payouts/withdraw/                  - Manual "withdraw all"
    - POST     /pesapal/register-ipn/              - Register Pesapal IPN (admin)
    - POST     /webhooks/mpesa/                    - M-Pesa STK callback
    - POST     /webhooks/mpesa/b2c/result/         - M-Pesa B2C result
    - POST     /webhooks/mpesa/b2c/timeout/        - M-Pesa B2C queue timeout
    - GET/POST /webhooks/pesapal/ipn/              - Pesapal IPN
    - GET      /webhooks/pesapal/callback/         - Pesapal browser redirect
    - POST     /webhooks/intasend/                 - IntaSend webhook
    - POST     /webhooks/paystack/                 - Paystack webhook
    - POST     /webhooks/stripe/                   - Stripe webhook
    - GET/POST /jobs/<job>/                        - Scheduled job triggers

All routes are prefixed with /api/v1/payments/ when included in the main URLconf.
"""

from django.urls import path

from payments import views
from payments.webhooks import views as webhook_views

app_name = "payments"

urlpatterns = [
    # Collection
    path("checkout/", views.CheckoutView.as_view(), name="checkout"),
    path("delivery-fee/", views.DeliveryFeeView.as_view(), name="delivery_fee"),
    # Balance and payouts
    path("balance/", views.VendorBalanceView.as_view(), name="balance"),
    path("payouts/withdraw/", views.WithdrawView.as_view(), name="withdraw"),
    # Admin
    path("pesapal/register-ipn/", views.RegisterPesapalIpnView.as_view(), name="pesapal_register_ipn"),
    # Webhook endpoints
    path("webhooks/mpesa/", webhook_views.mpesa_webhook, name="mpesa_webhook"),
    path("webhooks/mpesa/b2c/result/", webhook_views.mpesa_b2c_result, name="mpesa_b2c_result"),
    path("webhooks/mpesa/b2c/timeout/", webhook_views.mpesa_b2c_timeout, name="mpesa_b2c_timeout"),
    path("webhooks/pesapal/ipn/", webhook_views.pesapal_ipn, name="pesapal_ipn"),
    path("webhooks/pesapal/callback/", webhook_views.pesapal_callback, name="pesapal_callback"),
    path("webhooks/intasend/", webhook_views.intasend_webhook, name="intasend_webhook"),
    path("webhooks/paystack/", webhook_views.paystack_webhook, name="paystack_webhook"),
    path("webhooks/stripe/", webhook_views.stripe_webhook, name="stripe_webhook"),
    # Scheduled jobs
    path("jobs/auto-payout/", views.AutoPayoutJobView.as_view(), name="job_auto_payout"),
    path("jobs/auto-release/", views.AutoReleaseJobView.as_view(), name="job_auto_release"),
    path(
        "jobs/cancel-stale-orders/",
        views.CancelStaleOrdersJobView.as_view(),
        name="job_cancel_stale_orders",
    ),
    path(
        "jobs/refund-unshipped-orders/",
        views.RefundUnshippedOrdersJobView.as_view(),
        name="job_refund_unshipped_orders",
    ),
]
