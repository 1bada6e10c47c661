"""
Utility modules for the rewards engine.
"""
from .exceptions import (
    RewardsError,
    NotFoundError,
    InvalidAmountError,
    CustomerIneligibleError,
    ConfigurationError,
    InsufficientPointsError,
    DuplicateEntryError,
    RemoteServiceError,
    LockContentionError,
    AuthFailure,
    InvalidStatusTransitionError,
    RedemptionPendingError,
)
from .errors import ErrorCode, error_response, exception_response

__all__ = [
    'RewardsError',
    'NotFoundError',
    'InvalidAmountError',
    'CustomerIneligibleError',
    'ConfigurationError',
    'InsufficientPointsError',
    'DuplicateEntryError',
    'RemoteServiceError',
    'LockContentionError',
    'AuthFailure',
    'InvalidStatusTransitionError',
    'RedemptionPendingError',
    'ErrorCode',
    'error_response',
    'exception_response',
]
