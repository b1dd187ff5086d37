"""Error taxonomy for the sandwich execution pipeline"""

from typing import Optional


class MevSandwichError(Exception):
    """Base error carrying a machine-readable code and the chain involved"""

    code = "MEV_ERROR"
    retryable = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        chain: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.chain = chain
        self.cause = cause

    def __str__(self) -> str:
        if self.chain:
            return f"[{self.code}] {self.message} (chain={self.chain})"
        return f"[{self.code}] {self.message}"


class ConfigurationError(MevSandwichError):
    """Invalid chain, relay or risk configuration. Fatal at start-up."""

    code = "CONFIGURATION_ERROR"


class PriceDataError(MevSandwichError):
    """Price source unavailable or returned unusable data"""

    code = "PRICE_DATA_ERROR"
    retryable = True


class CircuitOpenError(MevSandwichError):
    """Call rejected because the dependency's circuit breaker is open"""

    code = "CIRCUIT_OPEN"


class ValidationError(MevSandwichError):
    """Execution parameters failed pre-submission validation"""

    code = "VALIDATION_ERROR"


class ExecutionError(MevSandwichError):
    """Bundle construction, submission or tracking failed"""

    code = "EXECUTION_ERROR"


class RelayConnectionError(ExecutionError):
    """Transient network or relay API failure"""

    code = "RELAY_CONNECTION_ERROR"
    retryable = True


class RelayRejectedError(ExecutionError):
    """Relay refused the bundle (simulation revert, invalid bundle, ...)"""

    code = "RELAY_REJECTED"


class BundleExpiredError(ExecutionError):
    """No terminal status was reported before the execution deadline"""

    code = "BUNDLE_EXPIRED"


class DuplicateSubmissionError(ExecutionError):
    """A bundle for the same victim transaction is already active"""

    code = "DUPLICATE_SUBMISSION"


def is_retryable(error: BaseException) -> bool:
    """Check whether an error is worth another attempt"""
    return bool(getattr(error, "retryable", False))
