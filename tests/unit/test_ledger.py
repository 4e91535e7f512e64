from __future__ import annotations

import threading
from typing import List, Optional

from optimus.engine.ledger import AttemptLedger
from optimus.models import Competition

DEMO = Competition(id="competition-123", name="Demo Competition", max_attempts=3)


def _race(ledger: AttemptLedger, identity: str, competition: Competition, workers: int) -> List[Optional[int]]:
    barrier = threading.Barrier(workers)
    results: List[Optional[int]] = []
    results_lock = threading.Lock()

    def worker() -> None:
        barrier.wait()
        outcome = ledger.record_attempt(identity, competition)
        with results_lock:
            results.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


def test_remaining_counts_down_to_zero_and_stays_there() -> None:
    ledger = AttemptLedger()

    assert ledger.attempts_remaining("abc", DEMO) == 3
    for expected in (2, 1, 0):
        assert ledger.record_attempt("abc", DEMO) == expected
        assert ledger.attempts_remaining("abc", DEMO) == expected

    for _ in range(3):
        assert ledger.record_attempt("abc", DEMO) is None
    assert ledger.attempts_remaining("abc", DEMO) == 0
    assert ledger.get_record("abc", DEMO.id).attempts_used == 3


def test_entry_is_created_lazily_on_first_read() -> None:
    ledger = AttemptLedger()
    assert ledger.get_record("abc", DEMO.id) is None

    ledger.attempts_remaining("abc", DEMO)

    record = ledger.get_record("abc", DEMO.id)
    assert record.attempts_used == 0
    assert record.last_submission_timestamp is None


def test_exactly_one_concurrent_attempt_wins_the_last_slot() -> None:
    ledger = AttemptLedger()
    ledger.record_attempt("abc", DEMO)
    ledger.record_attempt("abc", DEMO)

    results = _race(ledger, "abc", DEMO, workers=16)

    assert results.count(0) == 1
    assert results.count(None) == 15
    assert ledger.attempts_remaining("abc", DEMO) == 0
    assert ledger.get_record("abc", DEMO.id).attempts_used == 3


def test_concurrent_attempts_never_exceed_quota() -> None:
    ledger = AttemptLedger()
    competition = Competition(id="big", name="Big", max_attempts=7)

    results = _race(ledger, "abc", competition, workers=40)

    # each winner sees the count left after its own attempt
    assert sorted(r for r in results if r is not None) == [0, 1, 2, 3, 4, 5, 6]
    assert results.count(None) == 33
    assert ledger.get_record("abc", "big").attempts_used == 7


def test_pairs_are_independent() -> None:
    ledger = AttemptLedger()
    other = Competition(id="competition-456", name="Advanced Competition", max_attempts=5)

    for _ in range(3):
        ledger.record_attempt("abc", DEMO)

    assert ledger.attempts_remaining("abc", DEMO) == 0
    assert ledger.attempts_remaining("xyz", DEMO) == 3
    assert ledger.attempts_remaining("abc", other) == 5


def test_keys_that_would_collide_when_concatenated_stay_separate() -> None:
    ledger = AttemptLedger()
    first = Competition(id="b_c", name="first", max_attempts=1)
    second = Competition(id="c", name="second", max_attempts=1)

    assert ledger.record_attempt("a", first) == 0
    assert ledger.record_attempt("a_b", second) == 0
    assert ledger.get_record("a", "b_c").attempts_used == 1
    assert ledger.get_record("a_b", "c").attempts_used == 1


def test_rollback_returns_an_attempt_but_never_goes_negative() -> None:
    ledger = AttemptLedger()

    ledger.record_attempt("abc", DEMO)
    ledger.rollback_attempt("abc", DEMO)
    assert ledger.attempts_remaining("abc", DEMO) == 3

    ledger.rollback_attempt("abc", DEMO)
    assert ledger.get_record("abc", DEMO.id).attempts_used == 0


def test_mark_submitted_records_timestamp() -> None:
    ledger = AttemptLedger()
    ledger.mark_submitted("abc", DEMO.id, 1700000000.5)
    assert ledger.get_record("abc", DEMO.id).last_submission_timestamp == 1700000000.5


def test_get_record_returns_a_snapshot() -> None:
    ledger = AttemptLedger()
    ledger.record_attempt("abc", DEMO)

    snapshot = ledger.get_record("abc", DEMO.id)
    snapshot.attempts_used = 99

    assert ledger.attempts_remaining("abc", DEMO) == 2
