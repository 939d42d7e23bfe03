"""
Payments app: collection, escrow, vendor balances and payouts.

This app handles:
- Gateway adapters for M-Pesa, Pesapal, IntaSend, Paystack and Stripe
- Checkout and delivery-fee collection
- Webhook reconciliation against gateway-verified status
- Escrow holds, releases, freezes and refunds
- Vendor balances, fee policies and payouts

Related apps:
    - orders: Orders whose payments and escrow live here
    - authentication: Buyers and vendors

Usage:
    from payments.services import CheckoutService

    result = CheckoutService.start_checkout(order_id, "mpesa", billing, request.user)
"""
