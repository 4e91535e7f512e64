"""
Competition registry and format negotiation.

The required packaging format comes from an explicit table keyed by
competition id, with a configured default for ids that are not in it.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional

from ..engine.ledger import AttemptLedger
from ..models.models import ArchiveFormat, CheckResult, Competition
from ..utils.logger_config import get_logger

logger = get_logger("negotiator")

UNKNOWN_COMPETITION_NAME = "Unknown Competition"
DEFAULT_COMPETITION_ID = "default"

DEMO_COMPETITIONS = (
    Competition(id="competition-123", name="Demo Competition", max_attempts=3, format=ArchiveFormat.REPO),
    Competition(id="competition-456", name="Advanced Competition", max_attempts=5, format=ArchiveFormat.PY),
)


class CompetitionRegistry:
    """Registered competitions plus lenient defaults for everything else"""

    def __init__(
        self,
        competitions: Iterable[Competition] = (),
        format_map: Optional[Mapping[str, ArchiveFormat]] = None,
        default_format: ArchiveFormat = ArchiveFormat.REPO,
        default_max_attempts: int = 3,
    ):
        self._competitions: Dict[str, Competition] = {c.id: c for c in competitions}
        self._format_map: Dict[str, ArchiveFormat] = {
            cid: ArchiveFormat.parse(fmt) for cid, fmt in (format_map or {}).items()
        }
        self.default_format = ArchiveFormat.parse(default_format)
        self.default_max_attempts = default_max_attempts

    def format_for(self, competition_id: str) -> ArchiveFormat:
        if competition_id in self._format_map:
            return self._format_map[competition_id]
        competition = self._competitions.get(competition_id)
        if competition is not None:
            return competition.format
        return self.default_format

    def is_registered(self, competition_id: str) -> bool:
        return competition_id in self._competitions

    def get(self, competition_id: str) -> Competition:
        """Registered competition, or a placeholder built from the defaults"""
        competition = self._competitions.get(competition_id)
        if competition is not None:
            if competition_id in self._format_map:
                return Competition(
                    id=competition.id,
                    name=competition.name,
                    max_attempts=competition.max_attempts,
                    format=self._format_map[competition_id],
                )
            return competition
        return Competition(
            id=competition_id,
            name=UNKNOWN_COMPETITION_NAME,
            max_attempts=self.default_max_attempts,
            format=self.format_for(competition_id),
        )

    def list(self) -> List[Competition]:
        return [self.get(cid) for cid in self._competitions]


class Negotiator:
    """Answers the pre-submission check"""

    def __init__(self, registry: CompetitionRegistry, ledger: AttemptLedger):
        self.registry = registry
        self.ledger = ledger

    def check(self, identity: str, competition_id: str) -> CheckResult:
        competition = self.registry.get(competition_id)
        remaining = self.ledger.attempts_remaining(identity, competition)
        record = self.ledger.get_record(identity, competition.id)

        logger.info(f"Check for competition {competition.id}: format={competition.format.value}, remaining={remaining}")
        return CheckResult(
            required_format=competition.format,
            remaining_attempts=remaining,
            competition_name=competition.name,
            last_submission_timestamp=record.last_submission_timestamp if record else None,
        )
