"""
Central constants for the SalesCRM application.
"""
from __future__ import annotations

# Sales rep roles (visibility scope)
ROLE_SALES_REP = "sales_rep"
ROLE_MANAGER = "manager"
ROLE_ADMIN = "admin"
ROLES = (ROLE_SALES_REP, ROLE_MANAGER, ROLE_ADMIN)
PRIVILEGED_ROLES = frozenset({ROLE_MANAGER, ROLE_ADMIN})

ROLE_LABELS = {
    ROLE_SALES_REP: "Sales Rep",
    ROLE_MANAGER: "Manager",
    ROLE_ADMIN: "Administrator",
}

# Deal lifecycle
STATUS_NEGOTIATION = "negotiation"
STATUS_PROPOSAL = "proposal"
STATUS_QUOTATION = "quotation"
STATUS_FINAL_NEGOTIATION = "final_negotiation"
STATUS_WON = "won"
STATUS_LOST = "lost"

DEAL_STATUSES = (
    STATUS_NEGOTIATION,
    STATUS_PROPOSAL,
    STATUS_QUOTATION,
    STATUS_FINAL_NEGOTIATION,
    STATUS_WON,
    STATUS_LOST,
)
IN_PROGRESS_STATUSES = frozenset(
    {STATUS_NEGOTIATION, STATUS_PROPOSAL, STATUS_QUOTATION, STATUS_FINAL_NEGOTIATION}
)
CLOSED_STATUSES = frozenset({STATUS_WON, STATUS_LOST})
IN_PROGRESS = "in_progress"

STATUS_LABELS = {
    STATUS_NEGOTIATION: "Negotiation",
    STATUS_PROPOSAL: "Proposal",
    STATUS_QUOTATION: "Quotation",
    STATUS_FINAL_NEGOTIATION: "Final negotiation",
    STATUS_WON: "Won",
    STATUS_LOST: "Lost",
}

# Deal categories (free text; these two drive the category breakdowns)
CATEGORY_MACHINERY = "機械工具"
CATEGORY_CONSTRUCTION = "工事"
DEAL_CATEGORIES = (CATEGORY_MACHINERY, CATEGORY_CONSTRUCTION)
CATEGORY_LABELS = {
    CATEGORY_MACHINERY: "Machinery & Tools",
    CATEGORY_CONSTRUCTION: "Construction",
}

# Activity log
ACTIVITY_TYPES = ("visit", "phone", "email", "web_meeting", "other")
ACTIVITY_TYPE_LABELS = {
    "visit": "Visit",
    "phone": "Phone",
    "email": "Email",
    "web_meeting": "Web meeting",
    "other": "Other",
}

# Report periods
REPORT_PERIODS = ("week", "month", "quarter", "year")
PERIOD_LABELS = {
    "week": "Last 7 days",
    "month": "Last month",
    "quarter": "Last quarter",
    "year": "Last year",
}

# Leaderboard metrics
METRIC_WON_AMOUNT = "won_amount"
METRIC_IN_PROGRESS_AMOUNT = "in_progress_amount"
METRIC_WON_PROFIT = "won_profit"
METRIC_IN_PROGRESS_PROFIT = "in_progress_profit"
METRICS = (METRIC_WON_AMOUNT, METRIC_IN_PROGRESS_AMOUNT, METRIC_WON_PROFIT, METRIC_IN_PROGRESS_PROFIT)
METRIC_LABELS = {
    METRIC_WON_AMOUNT: "Won amount",
    METRIC_IN_PROGRESS_AMOUNT: "In-progress amount",
    METRIC_WON_PROFIT: "Won gross profit",
    METRIC_IN_PROGRESS_PROFIT: "In-progress gross profit",
}

CATEGORY_ALL = "all"
CATEGORY_FILTERS = (CATEGORY_ALL, CATEGORY_MACHINERY, CATEGORY_CONSTRUCTION)

# Department comparison views
DEPARTMENT_VIEWS = {
    "revenue": ("won_amount", "Revenue"),
    "profit": ("won_profit", "Gross profit"),
    "deals": ("won_deals", "Won deals"),
    "inprogress_deals": ("in_progress_deals", "In-progress deals"),
    "inprogress_amount": ("in_progress_amount", "In-progress amount"),
}
COUNT_DEPARTMENT_VIEWS = frozenset({"deals", "inprogress_deals"})

PAGE_SIZE = 12
