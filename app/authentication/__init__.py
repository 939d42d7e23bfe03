"""
Email-based users and JWT endpoints.

Buyers, vendors and staff are all ``authentication.User``; a user acts as a
vendor by owning products and a payout account.
"""
