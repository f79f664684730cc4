"""Error kinds raised by the resource store.

Callers (the HTTP layer included) should depend on these kinds only, never on
the underlying OS exception types.
"""


class ResourceError(Exception):
    pass


class PathInvalidError(ResourceError):
    """Traversal attempt, absolute path, invalid characters or drive injection."""


class NotFoundError(ResourceError):
    pass


class AlreadyExistsError(ResourceError):
    pass


class InvalidArgumentError(ResourceError):
    """A required value is missing, empty or malformed."""


class UploadTooLargeError(InvalidArgumentError):
    def __init__(self, limit_bytes: int):
        self.limit_bytes = limit_bytes
        super().__init__(f"File exceeds the maximum allowed size of {limit_bytes} bytes")


class IllegalOperationError(ResourceError):
    """The request is well-formed but makes no sense for its target."""


class StorageIOError(ResourceError):
    """The filesystem failed underneath an otherwise valid operation."""
