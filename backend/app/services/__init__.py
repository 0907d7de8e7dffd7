# backend/app/services/__init__.py
"""
Services layer for business logic.
Keeps API endpoints thin and business logic testable and reusable.
Services flush but never commit; routers own the transaction.
"""

from backend.app.services.orders import (
    OrderService,
    OrderServiceError,
    OrderNotFoundError,
    InvalidOrderTransitionError,
    RejectionReasonRequiredError,
)
from backend.app.services.withdrawals import (
    WithdrawalService,
    WithdrawalServiceError,
    InsufficientBalanceError,
    InvalidWithdrawalStatusError,
)
from backend.app.services.ledger import LedgerService, LedgerServiceError
from backend.app.services.invoices import (
    CreditLimitExceededError,
    check_invoice_credit,
    compute_due_date,
    finance_summary,
    open_debt,
)
from backend.app.services.profiles import ProfileService, ProfileServiceError
from backend.app.services.notifications import NotificationService
from backend.app.services.payment import PaymentService, PaymentServiceError
from backend.app.services.commissions import calculate_commission, commission_rate_for
from backend.app.services.cache import CacheService

__all__ = [
    # Order service
    "OrderService",
    "OrderServiceError",
    "OrderNotFoundError",
    "InvalidOrderTransitionError",
    "RejectionReasonRequiredError",
    # Withdrawal service
    "WithdrawalService",
    "WithdrawalServiceError",
    "InsufficientBalanceError",
    "InvalidWithdrawalStatusError",
    # Ledger
    "LedgerService",
    "LedgerServiceError",
    # Invoice credit
    "CreditLimitExceededError",
    "check_invoice_credit",
    "compute_due_date",
    "finance_summary",
    "open_debt",
    # Profiles / notifications / payments
    "ProfileService",
    "ProfileServiceError",
    "NotificationService",
    "PaymentService",
    "PaymentServiceError",
    # Commission functions
    "calculate_commission",
    "commission_rate_for",
    # Cache service
    "CacheService",
]
