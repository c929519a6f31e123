"""Custom exception hierarchy for Nimbus configuration and provisioning."""


class NimbusError(Exception):
    """Base exception for all Nimbus errors.

    All Nimbus-specific exceptions inherit from this class, enabling
    centralized exception handling in the CLI.
    """

    pass


class ConfigError(NimbusError):
    """Exception raised for configuration errors.

    Raised when the project file or the state backend profile cannot be
    loaded or parsed.

    Attributes:
        field: The configuration field that caused the error
        message: Human-readable error message describing the issue
    """

    def __init__(self, field: str, message: str) -> None:
        """Initialize ConfigError with field and message.

        Args:
            field: Configuration field name where error occurred
            message: Descriptive error message
        """
        self.field = field
        self.message = message
        super().__init__(f"Configuration error in '{field}': {message}")


class ValidationError(NimbusError):
    """Exception raised when a resource declaration is malformed.

    Declarations are validated before any remote call is made, so this error
    never leaves partially provisioned resources behind.

    Attributes:
        field: The field that failed validation
        message: Description of the validation failure
        expected: Human description of expected value/type
        actual: The actual value that failed validation
    """

    def __init__(
        self,
        field: str,
        message: str,
        expected: str,
        actual: str,
    ) -> None:
        """Initialize ValidationError with detailed information.

        Args:
            field: Field that failed validation
            message: Description of what went wrong
            expected: Human-readable description of expected value
            actual: The actual value that failed
        """
        self.field = field
        self.message = message
        self.expected = expected
        self.actual = actual
        full_message = (
            f"Validation error in '{field}': {message}\n"
            f"  Expected: {expected}\n"
            f"  Got: {actual}"
        )
        super().__init__(full_message)


class DeploymentError(NimbusError):
    """Exception raised when a provisioning or teardown step fails.

    Attributes:
        operation: The operation that failed (deploy, destroy, state, ...)
        message: Human-readable error message
        code: Provider error code, when the failure came from a provider call
    """

    def __init__(self, operation: str, message: str, code: str | None = None) -> None:
        """Create a deployment error with operation context."""
        self.operation = operation
        self.message = message
        self.code = code
        prefix = f"[{code}] " if code else ""
        super().__init__(f"{operation} failed: {prefix}{message}")


class StateError(DeploymentError):
    """Exception raised when the remote state document is unreadable."""

    def __init__(self, message: str) -> None:
        """Create a state error."""
        super().__init__(operation="state", message=message)


class LockAcquisitionError(DeploymentError):
    """Exception raised when the state lock stays held past the retry ceiling.

    Attributes:
        lock_key: Remote key of the lock marker
        attempts: Number of acquisition attempts made
    """

    def __init__(self, lock_key: str, attempts: int) -> None:
        """Create a lock acquisition error."""
        self.lock_key = lock_key
        self.attempts = attempts
        super().__init__(
            operation="lock",
            message=(
                f"Could not acquire lock '{lock_key}' after {attempts} attempts. "
                "If no other deployment is running, clear it with `nimbus unlock`."
            ),
        )


class PollTimeoutError(NimbusError):
    """Exception raised when a bounded poll loop exceeds its attempt ceiling.

    Distinguishes "the provider is still converging" from "the provider
    rejected the request".

    Attributes:
        operation: What was being waited on
        attempts: Number of attempts made before giving up
    """

    def __init__(self, operation: str, attempts: int) -> None:
        """Create a poll timeout error."""
        self.operation = operation
        self.attempts = attempts
        super().__init__(f"Timed out waiting for {operation} after {attempts} attempts")


class CertificateValidationError(NimbusError):
    """Exception raised when a certificate request ends in FAILED."""

    def __init__(self, domain: str, reason: str | None) -> None:
        """Create a certificate validation error."""
        self.domain = domain
        self.reason = reason or "unknown reason"
        super().__init__(
            f"Certificate validation failed for {domain}: {self.reason}"
        )


class ForceRequiredError(NimbusError):
    """Exception raised when a data-bearing resource is destroyed without force.

    The guard runs locally; no remote call is attempted.
    """

    def __init__(self, kind: str, name: str) -> None:
        """Create a force-required error."""
        self.kind = kind
        self.name = name
        super().__init__(
            f"Refusing to destroy {kind} '{name}' without force (use --force)"
        )
