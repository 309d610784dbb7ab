"""
Application constants for Plenaria Legal.
"""

# User roles
ROLE_ADMIN = "admin"
ROLE_LAWYER = "lawyer"
ROLE_CUSTOMER = "customer"
USER_ROLES = (ROLE_ADMIN, ROLE_LAWYER, ROLE_CUSTOMER)

# User account status
USER_ACTIVE = "ACTIVE"
USER_PENDING = "PENDING"
USER_SUSPENDED = "SUSPENDED"
USER_STATUSES = (USER_ACTIVE, USER_PENDING, USER_SUSPENDED)

# Customer plan tiers
PLAN_BASIC = "basic"
PLAN_PLUS = "plus"
PLAN_PREMIUM = "premium"
PLANS = (PLAN_BASIC, PLAN_PLUS, PLAN_PREMIUM)

# Quota sentinel for plans without a monthly cap
UNLIMITED_QUOTA = -1

# Admin trial grants
MIN_TRIAL_DAYS = 1
MAX_TRIAL_DAYS = 90

# Pagination
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

# Metrics
TREND_WINDOW_DAYS = 30

# Live channel close code for rejected credentials
WS_AUTH_FAILED = 4401
