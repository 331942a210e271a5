"""Application modules.

This package contains the feature modules of SchoolPay:
- billing: Payments, invoices, payment methods and subscriptions
"""
