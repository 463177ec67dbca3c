"""Engine exception classes."""


class ContextEngineError(Exception):
    """Base engine error."""

    pass


class StorageError(ContextEngineError):
    """Durable storage failure."""

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        super().__init__(message)


class StorageUnavailableError(StorageError):
    """Durable storage is not connected or cannot be reached."""

    pass


class ValidationError(ContextEngineError):
    """Malformed input rejected at the engine boundary."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"Validation error for '{field}': {message}")


class CollaboratorError(ContextEngineError):
    """An external collaborator failed."""

    def __init__(self, name: str, message: str):
        self.name = name
        super().__init__(f"Collaborator '{name}' failed: {message}")
