"""Exception types for silo-provision."""


class SiloProvisionError(Exception):
    """Base exception for all silo-provision errors."""
    pass


class TransportError(SiloProvisionError):
    """A page read or write against the tag failed or came back short.

    Fatal for the current card workflow. The operator has to re-present
    the tag; nothing is retried automatically.
    """
    def __init__(self, operation: str, address: int, message: str, cause: Exception = None):
        self.operation = operation
        self.address = address
        self.cause = cause
        super().__init__(f"{operation} at page 0x{address:02X} failed: {message}")


class MalformedTagError(SiloProvisionError):
    """Decoded buffer does not match the declared field layout."""
    def __init__(self, field: str, required: int, actual: int):
        self.field = field
        self.required = required
        self.actual = actual
        super().__init__(
            f"Tag buffer does not fit field '{field}': need {required} bytes, got {actual}"
        )


class RegistryLoadError(SiloProvisionError):
    """Device registry file is missing or cannot be parsed."""
    def __init__(self, path: str, cause: Exception = None):
        self.path = path
        self.cause = cause
        super().__init__(f"Failed to load device registry: {path} ({cause})")
