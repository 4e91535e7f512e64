from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
import uuid

from ..exceptions import ValidationError


# Helper function to generate unique IDs
def generate_id() -> str:
    """Generate a unique ID for entities"""
    return str(uuid.uuid4())


class ArchiveFormat(str, Enum):
    REPO = "repo"
    PY = "py"

    @classmethod
    def parse(cls, value: Any) -> "ArchiveFormat":
        """Parse a format tag, raising ValidationError for unknown values"""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            allowed = ", ".join(f.value for f in cls)
            raise ValidationError(f"Unknown archive format '{value}' (expected one of: {allowed})") from None


@dataclass(frozen=True)
class Competition:
    """A named scope defining the attempt quota and the required packaging format"""

    id: str
    name: str
    max_attempts: int
    format: ArchiveFormat = ArchiveFormat.REPO

    def __post_init__(self) -> None:
        if not isinstance(self.max_attempts, int) or self.max_attempts <= 0:
            raise ValidationError(
                f"Competition {self.id} must allow a positive number of attempts, got {self.max_attempts!r}"
            )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Competition":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", data["id"])),
            max_attempts=int(data.get("max_attempts", 3)),
            format=ArchiveFormat.parse(data.get("format", ArchiveFormat.REPO)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "max_attempts": self.max_attempts,
            "format": self.format.value,
        }


@dataclass
class AttemptRecord:
    """Attempts consumed by one identity in one competition"""

    attempts_used: int = 0
    last_submission_timestamp: Optional[float] = None

    def remaining(self, max_attempts: int) -> int:
        return max(0, max_attempts - self.attempts_used)


@dataclass
class CheckResult:
    """Answer of the negotiator for one (identity, competition) pair"""

    required_format: ArchiveFormat
    remaining_attempts: int
    competition_name: str
    last_submission_timestamp: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        last = self.last_submission_timestamp
        return {
            "required_format": self.required_format.value,
            "remaining_attempts": self.remaining_attempts,
            "last_submission_by_user": int(last) if last is not None else None,
            "competition_name": self.competition_name,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CheckResult":
        last = data.get("last_submission_by_user")
        return cls(
            required_format=ArchiveFormat.parse(data["required_format"]),
            remaining_attempts=int(data["remaining_attempts"]),
            competition_name=str(data.get("competition_name", "")),
            last_submission_timestamp=float(last) if last is not None else None,
        )


@dataclass
class SubmissionResult:
    """Outcome of one accepted submission"""

    filename: str
    size_bytes: int
    timestamp: int  # epoch milliseconds
    attempts_remaining: int
    competition_id: str
    message: str = "File received successfully"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "filename": self.filename,
            "size": self.size_bytes,
            "timestamp": self.timestamp,
            "competition": self.competition_id,
            "attempts_remaining": self.attempts_remaining,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubmissionResult":
        return cls(
            filename=str(data["filename"]),
            size_bytes=int(data.get("size", 0)),
            timestamp=int(data.get("timestamp", 0)),
            attempts_remaining=int(data["attempts_remaining"]),
            competition_id=str(data.get("competition", "")),
            message=str(data.get("message", "")),
        )


@dataclass
class ArchiveRequest:
    """Validated inputs for one archive build, discarded once it is written"""

    root_path: str
    format: ArchiveFormat
    exclusions: Tuple[str, ...] = ()
    compression_level: int = 6


@dataclass
class ArchiveReport:
    """What a build wrote and what it had to leave out"""

    path: str
    files: List[str] = field(default_factory=list)
    skipped: List[Tuple[str, str]] = field(default_factory=list)
    size_bytes: int = 0

    @property
    def file_count(self) -> int:
        return len(self.files)
