"""
Deterministic planning thresholds shared by the readiness, variance,
restriction and alert engines.

Kept in one module so every engine classifies with the same numbers and
tests can pin them.
"""

COMPLETE_COVERAGE_RATIO = 0.95
OVER_APPLICATION_RATIO = 1.05

DAYS_PER_MONTH = 30
LBS_PER_TON = 2000.0
FL_OZ_PER_GAL = 128.0
GRAMS_PER_LB = 453.592
LBS_PER_CWT = 100.0

PLANNED_PRICE_SOURCE_RANK = {
    "manual_override": 0,
    "manual": 1,
    "awarded": 2,
    "estimated": 3,
}
UNRANKED_SOURCE = 9
INVOICE_PRICE_SOURCE = "invoice"

CLOSED_ORDER_STATUSES = {
    "CLOSED", "CANCELLED", "CANCELED", "RECEIVED",
    "COMPLETE", "COMPLETED", "DELIVERED",
}
OPEN_ORDER_STATUSES = {"draft", "ordered", "confirmed", "partial"}
RECEIVED_ORDER_STATUSES = {"partial", "complete"}
OPEN_PURCHASE_STATUS = "ordered"

DEFAULT_OVERDUE_DAYS = 21
DEFAULT_PRICE_SPIKE_PCT = 15.0
MISSING_PRICE_WARNING_COUNT = 5
