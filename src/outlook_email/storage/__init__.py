"""Local email cache.

This package stores one file per pulled email, keyed by a stable id derived
from the remote message id, together with any offline state queued against it.
"""

from .repository import RecordStore

__all__ = ["RecordStore"]
