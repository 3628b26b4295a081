from core.retry import NonRetryableError, RetryableError


class AllocationDomainError(Exception):
    """Base class for all port allocation domain errors."""

    code = "allocation_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

class NotFoundError(AllocationDomainError, NonRetryableError):
    """Raised when a referenced port, subscription or order does not exist."""

    code = "not_found"

class AlreadyAssignedError(AllocationDomainError, NonRetryableError):
    """Raised when the target subscription already holds a port."""

    code = "already_assigned"

class DuplicateError(AllocationDomainError, NonRetryableError):
    """Raised when a port with the same instance URL already exists."""

    code = "duplicate_instance"

class PortStateError(AllocationDomainError, NonRetryableError):
    """Raised when a port's current state forbids the requested change."""

    code = "invalid_port_state"

class SubscriptionStateError(AllocationDomainError, NonRetryableError):
    """Raised when a subscription can no longer receive a port (expired, cancelled)."""

    code = "invalid_subscription_state"

class OrderStateError(AllocationDomainError, NonRetryableError):
    """Raised when an order has not reached SUCCESS and cannot trigger allocation."""

    code = "invalid_order_state"

class InvalidPortDataError(AllocationDomainError, NonRetryableError):
    """Raised when operator-supplied port data fails validation."""

    code = "invalid_port_data"

class ConflictRetryableError(AllocationDomainError, RetryableError):
    """Raised when a compare-and-set lost a race; the caller may retry."""

    code = "conflict_retryable"

class PersistenceError(AllocationDomainError, RetryableError):
    """Raised after rollback when the storage layer fails."""

    code = "persistence_error"
