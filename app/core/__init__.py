"""
Shared building blocks for the orders and payments apps: the timestamped
base model and mixins, money helpers, ServiceResult/BaseService, the
application error hierarchy, and the health check. No marketplace rules
live here.
"""
