"""
Attempt ledger.

Authoritative in-memory count of the attempts each identity has consumed in
each competition. Entries live for the lifetime of the process.
"""

import threading
from typing import Dict, Optional, Tuple

from ..models.models import AttemptRecord, Competition
from ..utils.logger_config import get_logger

logger = get_logger("ledger")

LedgerKey = Tuple[str, str]


class AttemptLedger:
    """
    Per-(identity, competition) attempt counters.

    Every mutation of an entry happens under that entry's own lock, so
    unrelated pairs never wait on each other. The registry lock is held only
    while a missing entry is created.
    """

    def __init__(self):
        self._records: Dict[LedgerKey, AttemptRecord] = {}
        self._locks: Dict[LedgerKey, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _entry(self, identity: str, competition_id: str) -> Tuple[AttemptRecord, threading.Lock]:
        key = (identity, competition_id)
        record = self._records.get(key)
        if record is not None:
            return record, self._locks[key]
        with self._registry_lock:
            if key not in self._records:
                # Lock first: readers find the record only once its lock exists
                self._locks[key] = threading.Lock()
                self._records[key] = AttemptRecord()
                logger.debug(f"Created ledger entry for competition {competition_id}")
            return self._records[key], self._locks[key]

    def attempts_remaining(self, identity: str, competition: Competition) -> int:
        """Attempts still available, never negative"""
        record, lock = self._entry(identity, competition.id)
        with lock:
            return record.remaining(competition.max_attempts)

    def record_attempt(self, identity: str, competition: Competition) -> Optional[int]:
        """
        Consume one attempt if any remain.

        Returns:
            Attempts left after this one, read under the same lock as the
            increment, or None (with no change) when the quota is already
            used up
        """
        record, lock = self._entry(identity, competition.id)
        with lock:
            if record.remaining(competition.max_attempts) <= 0:
                return None
            record.attempts_used += 1
            logger.debug(
                f"Recorded attempt {record.attempts_used}/{competition.max_attempts} for competition {competition.id}"
            )
            return record.remaining(competition.max_attempts)

    def rollback_attempt(self, identity: str, competition: Competition) -> None:
        """Return an attempt consumed by a submission that could not be stored"""
        record, lock = self._entry(identity, competition.id)
        with lock:
            if record.attempts_used > 0:
                record.attempts_used -= 1
                logger.warning(f"Rolled back attempt for competition {competition.id}")

    def mark_submitted(self, identity: str, competition_id: str, timestamp: float) -> None:
        record, lock = self._entry(identity, competition_id)
        with lock:
            record.last_submission_timestamp = timestamp

    def get_record(self, identity: str, competition_id: str) -> Optional[AttemptRecord]:
        """Snapshot of an entry, or None if the pair has never been seen"""
        key = (identity, competition_id)
        if key not in self._records:
            return None
        record, lock = self._entry(identity, competition_id)
        with lock:
            return AttemptRecord(record.attempts_used, record.last_submission_timestamp)
