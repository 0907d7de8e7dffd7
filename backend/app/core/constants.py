"""
Shared constants for the backend application.
"""
from decimal import Decimal

# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------
ROLE_AFFILIATE = "affiliate"
ROLE_ADMIN = "admin"

# ---------------------------------------------------------------------------
# Order statuses
# ---------------------------------------------------------------------------
VALID_ORDER_STATUSES = ("pending", "approved", "paid", "shipped", "delivered", "rejected")

# Statuses in which the order counts as paid for commission purposes
PAID_FAMILY_STATUSES = ("paid", "shipped", "delivered")

# Invoice orders in these statuses are no longer open debt
SETTLED_INVOICE_STATUSES = ("paid", "rejected")

PAYMENT_METHODS = ("now", "invoice")

# ---------------------------------------------------------------------------
# Products / withdrawals
# ---------------------------------------------------------------------------
PRODUCT_STATUSES = ("pending", "approved", "rejected")
PRICE_TYPES = ("meter", "fixed")
WITHDRAWAL_STATUSES = ("pending", "approved", "rejected")

# ---------------------------------------------------------------------------
# Money
# ---------------------------------------------------------------------------
ZERO = Decimal("0")
ONE_CENT = Decimal("0.01")
PERCENT_BASE = Decimal("100")

DEFAULT_COMMISSION_RATE = Decimal("10")
WITHDRAWAL_MINIMUM = Decimal("100.00")
DEFAULT_INVOICE_LIMIT = Decimal("1000.00")
DEFAULT_INVOICE_DUE_DAY = 30
