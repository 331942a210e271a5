"""SchoolPay Billing Backend.

Billing for a school management system: student payments, invoices,
stored payment methods and recurring subscriptions.

Modules:
    - core: Configuration, database, logging, metrics, Celery setup
    - modules.billing: Payments, invoices, payment methods, subscriptions
"""

__version__ = "0.1.0"
