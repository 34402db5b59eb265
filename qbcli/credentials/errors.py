"""Errors raised while building a connection identity."""


class InvalidIdentityError(ValueError):
    """Raised when a connection identity fails validation.

    Attributes:
        field: Name of the offending field.
    """

    def __init__(self, field: str, message: str) -> None:
        """Initialize the error.

        Args:
            field: Name of the offending field.
            message: Human-readable message.
        """
        self.field = field
        super().__init__(message)
