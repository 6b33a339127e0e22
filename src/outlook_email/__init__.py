"""outlook-email - offline-first Outlook mailbox triage from the command line.

This package caches email metadata locally, queues offline edits
(read/unread, move, delete) and applies them to the mailbox later.
"""

__version__ = "0.1.0"

from outlook_email.config import Settings, get_settings

__all__ = ["Settings", "get_settings", "__version__"]
