"""Library for publishing rendered assignments to a GitOps repository."""

from .auth import GitCredentials
from .synchronizer import GitOpsSynchronizer

__all__ = [
    "GitCredentials",
    "GitOpsSynchronizer",
]
