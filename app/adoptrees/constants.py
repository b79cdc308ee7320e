"""
Central constants for the Adoptrees application.
"""
from __future__ import annotations

USER_TYPES = ("individual", "company")
ROLES = ("user", "admin", "wellwisher")

ORDER_STATUSES = ("pending", "confirmed", "planted", "completed", "cancelled")
PAYMENT_STATUSES = ("pending", "paid", "failed", "refunded")
ADOPTION_TYPES = ("self", "gift")

TASK_STATUSES = ("pending", "in_progress", "completed", "updating")
TASK_PRIORITIES = ("low", "medium", "high")
DEFAULT_TASK_LOCATION = "To be determined"

COUPON_USAGE_LIMIT_TYPES = ("unlimited", "custom")

# Images accepted for trees, profile pictures, planting and growth uploads
ALLOWED_IMAGE_TYPES = frozenset({"image/jpeg", "image/jpg", "image/png", "image/webp"})
MAX_IMAGE_BYTES = 5 * 1024 * 1024
MAX_GROWTH_IMAGE_BYTES = 10 * 1024 * 1024
MAX_TASK_IMAGES = 5
MAX_SMALL_TREE_IMAGES = 4

GROWTH_UPDATE_INTERVAL_DAYS = 30
QUARTERLY_UPDATE_AFTER_DAYS = 90

CURRENCY = "INR"
PAYMENT_METHOD_RAZORPAY = "razorpay"

ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    "admin": frozenset(
        {
            "admin.view",
            "trees.manage",
            "users.manage",
            "wellwishers.manage",
            "adoptions.manage",
            "coupons.manage",
            "cron.run",
            "orders.view",
        }
    ),
    "wellwisher": frozenset({"tasks.view", "tasks.update"}),
    "user": frozenset({"orders.create", "orders.view", "profile.edit", "cart.use"}),
}

# (limit, window seconds) keyed by limiter bucket
RATE_LIMITS: dict[str, tuple[int, int]] = {
    "auth.login": (10, 15 * 60),
    "auth.register": (5, 15 * 60),
    "payments.create": (10, 60),
    "payments.verify": (20, 60),
    "wellwishers.create": (10, 60),
}
