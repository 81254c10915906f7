"""
Error classes for sfoperators.

These error types drive retry classification at operator and poller boundaries:
- TransientError: Safe to retry (conflicts, held locks, backend outages)
- PermanentError: Do not retry (missing resources, misconfiguration)

Operators catch everything raised while processing a claimed resource and
record it in the resource status. Pollers catch per resource and try again
on the next tick. Nothing raised by a task reaches the watch loop.
"""


class OperatorsError(Exception):
    """Base exception for sfoperators."""
    pass


class TransientError(OperatorsError):
    """
    Transient error - safe to retry.

    Examples:
    - Optimistic update against a stale resource version
    - Lock currently held by another operator
    - Backend job API unreachable or returning 5xx

    Pollers leave the resource untouched and look again on the next tick.
    """
    pass


class PermanentError(OperatorsError):
    """
    Permanent error - do not retry.

    Examples:
    - Resource not found
    - Status transition out of a terminal state
    - Unknown task type, unparsable CIDR, unsupported network type

    Operators mark the resource FAILED immediately.
    """
    pass


class ConflictError(TransientError):
    """Write against a stale resource version, or create of an existing id."""

    def __init__(self, message: str, resource_key: str = ""):
        super().__init__(message)
        self.resource_key = resource_key


class ResourceLockedError(TransientError):
    """A live lock is held on the target instance."""

    def __init__(self, instance_id: str, locked_by: dict | None = None):
        self.instance_id = instance_id
        self.locked_by = locked_by or {}
        super().__init__(
            f"Instance {instance_id} is locked for "
            f"{self.locked_by.get('operation', 'another operation')}"
        )


class BackendError(TransientError):
    """Backend job API failure (network error, 5xx)."""
    pass


class NotFoundError(PermanentError):
    """The requested resource does not exist."""

    def __init__(self, message: str, resource_key: str = ""):
        super().__init__(message)
        self.resource_key = resource_key


class InvalidTransitionError(PermanentError):
    """A status write that follows no edge of the resource state machine."""
    pass


class ConfigurationError(PermanentError):
    """
    Misconfiguration - a programmer or operator error.

    Raised for unsupported network types, CIDR ranges that do not parse,
    and invalid configuration values. Never retried.
    """
    pass


class UnknownTaskTypeError(ConfigurationError, AssertionError):
    """No task implementation is registered for the requested task type."""
    pass


class NetworkExhaustedError(PermanentError):
    """Every network segment index is already in use."""
    pass


class InvalidInstanceIdError(PermanentError):
    """An instance id that cannot be encoded in a deployment name."""
    pass


class ExpiredError(TransientError):
    """A watch resumed from a resource version the store no longer keeps."""
    pass
