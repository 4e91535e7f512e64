"""
Models package for the Optimus submission system.

This package contains the data models shared by the client and the service.
"""

from .models import (
    ArchiveFormat,
    ArchiveReport,
    ArchiveRequest,
    AttemptRecord,
    CheckResult,
    Competition,
    SubmissionResult,
    generate_id
)

__all__ = [
    "ArchiveFormat",
    "ArchiveReport",
    "ArchiveRequest",
    "AttemptRecord",
    "CheckResult",
    "Competition",
    "SubmissionResult",
    "generate_id"
]
