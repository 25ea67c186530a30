"""Exceptions related to assignment-operator."""

__all__ = [
    "OperatorException",
    "StoreError",
    "UserInputError",
    "ReferenceNotFoundError",
    "RepositoryError",
    "NonFastForwardError",
    "FilesystemError",
    "TemplateError",
]


class OperatorException(Exception):
    """Generic base exception used for this library."""


class StoreError(OperatorException):
    """Raised when the resource store cannot be read or patched."""


class UserInputError(OperatorException):
    """Raised when a resource definition is missing fields or is malformed."""


class ReferenceNotFoundError(UserInputError):
    """Raised when a resource references another resource that does not exist."""

    def __init__(self, resource_name: str, reference: str) -> None:
        super().__init__(f"Resource {resource_name} references missing {reference}")
        self.resource_name = resource_name
        self.reference = reference


class RepositoryError(OperatorException):
    """Raised when a clone, commit or push against a git repository fails."""


class NonFastForwardError(RepositoryError):
    """Raised when a push is rejected because the remote branch moved.

    This is a retryable conflict: the whole synchronization must be repeated
    from a fresh clone.
    """


class FilesystemError(OperatorException):
    """Raised on local I/O failures while rendering or staging files."""


class TemplateError(OperatorException):
    """Raised when a template is malformed or references an unknown variable."""
