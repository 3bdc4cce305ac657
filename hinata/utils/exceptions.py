"""
Custom exception hierarchy for HiNATA.

Every store signals failures through these types. Each class carries a
stable ``code`` so that batch results and the REST layer can report the
failure kind without inspecting the message.
"""


class HiNATAError(Exception):
    """
    Base exception for all HiNATA errors.
    All custom exceptions should inherit from this class.
    """

    code = "HINATA_ERROR"

    def __init__(self, message: str, context: dict | None = None):
        """
        Initialize HiNATA error.
        Args:
            message: Error message
            context: Optional context dictionary with additional error details
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict:
        """Serialize the error for API responses and batch results."""
        return {"code": self.code, "message": self.message, "context": self.context}


class StoreError(HiNATAError):
    """
    Base exception for store operations.
    Raised when a store operation fails for a reason not covered below.
    """

    code = "STORE_ERROR"


class ValidationError(HiNATAError):
    """
    Validation errors.
    Raised before any mutation when input is malformed or missing
    required HiNATA fields.
    """

    code = "VALIDATION_ERROR"


class NotFoundError(HiNATAError):
    """
    Resource not found errors.
    Raised when an operation targets an id that doesn't exist.
    """

    code = "NOT_FOUND"


class DuplicateError(HiNATAError):
    """
    Duplicate record errors.
    Raised when a create resolves to an id or name that already exists.
    """

    code = "DUPLICATE"


class ConsistencyError(HiNATAError):
    """
    Invariant violations.
    Raised when a relation, reference or hierarchy change would break
    an invariant (self loops, cycles, foreign note items).
    """

    code = "CONSISTENCY_ERROR"


class ConfigurationError(HiNATAError):
    """
    Configuration errors.
    Raised when configuration is invalid or missing required values.
    """

    code = "CONFIGURATION_ERROR"
