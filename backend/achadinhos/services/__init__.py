"""Services module for business logic and data operations.

Services own database access for the scraper core: affiliate link
resolution, product reconciliation, the execution lifecycle and account
maintenance.
"""

from achadinhos.services.account_service import AccountService
from achadinhos.services.affiliate_service import AffiliateUrlResolver
from achadinhos.services.execution_service import ExecutionStateMachine
from achadinhos.services.product_reconciler import ProductReconciler

__all__ = [
    "AccountService",
    "AffiliateUrlResolver",
    "ExecutionStateMachine",
    "ProductReconciler",
]
