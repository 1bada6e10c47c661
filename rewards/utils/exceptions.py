"""
Exceptions raised by the rewards engine.

Every error carries a stable machine-readable ``code`` so the HTTP layer can
map it onto the standard error envelope without inspecting messages.
"""


class RewardsError(Exception):
    """Base exception for all rewards engine errors."""

    def __init__(self, message: str, code: str = "REWARDS_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class NotFoundError(RewardsError):
    """Resource not found."""

    def __init__(self, resource: str, identifier=None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with ID {identifier} not found"
        super().__init__(message, f"{resource.upper()}_NOT_FOUND")


class InvalidAmountError(RewardsError):
    """Requested points are not one of the shop's redemption steps."""

    def __init__(self, points, allowed=None):
        self.points = points
        self.allowed = list(allowed or [])
        message = f"Invalid redemption amount: {points}"
        if self.allowed:
            message = f"{message}. Allowed: {', '.join(str(s) for s in self.allowed)}"
        super().__init__(message, "INVALID_AMOUNT")


class CustomerIneligibleError(RewardsError):
    """Customer carries an excluded tag."""

    def __init__(self, customer_id: str, tag: str = None):
        self.customer_id = customer_id
        self.tag = tag
        super().__init__("Customer is not eligible for rewards", "CUSTOMER_INELIGIBLE")


class ConfigurationError(RewardsError):
    """Shop configuration is missing or cannot be resolved."""

    def __init__(self, message: str):
        super().__init__(message, "CONFIGURATION_ERROR")


class InsufficientPointsError(RewardsError):
    """Not enough points for the operation."""

    def __init__(self, current: int, required: int):
        self.current = current
        self.required = required
        message = f"Insufficient points. Current: {current}, Required: {required}"
        super().__init__(message, "INSUFFICIENT_POINTS")


class DuplicateEntryError(RewardsError):
    """
    The idempotency key of a ledger entry or snapshot already exists.

    Signals that the event was already applied. Callers treat it as a no-op.
    """

    def __init__(self, resource: str, key=None):
        self.key = key
        message = f"{resource} already exists"
        if key:
            message = f"{resource} {key} already exists"
        super().__init__(message, "DUPLICATE_ENTRY")


class RemoteServiceError(RewardsError):
    """Error communicating with the Shopify Admin API, or a rejected mutation."""

    def __init__(self, message: str, original_error: Exception = None, user_errors=None):
        self.original_error = original_error
        self.user_errors = list(user_errors or [])
        super().__init__(message, "SHOPIFY_ERROR")


class LockContentionError(RewardsError):
    """Another holder owns the job lock."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Job '{key}' is already running", "JOB_ALREADY_RUNNING")


class AuthFailure(RewardsError):
    """Caller identity could not be verified."""

    def __init__(self, message: str = "Authentication required", code: str = "AUTH_REQUIRED"):
        super().__init__(message, code)


class InvalidStatusTransitionError(RewardsError):
    """Invalid status transition for a resource."""

    def __init__(self, resource: str, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        message = f"Cannot change {resource} status from '{from_status}' to '{to_status}'"
        super().__init__(message, "INVALID_STATUS_TRANSITION")


class RedemptionPendingError(RewardsError):
    """A redemption for the same request is debited but its discount is not created yet."""

    def __init__(self, redemption_id: int):
        self.redemption_id = redemption_id
        super().__init__(
            "A redemption for this request is still being issued, retry shortly",
            "REDEMPTION_PENDING",
        )
