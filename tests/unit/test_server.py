from __future__ import annotations

import io
import os
import threading
from pathlib import Path
from typing import List

import pytest

from optimus.exceptions import ConfigurationError
from optimus.models import ArchiveFormat
from optimus.server.identity import StaticKeyResolver
from optimus.server.server import ServerConfig, create_app, load_competitions_file
from tests.helpers import auth


def _submit(http, competition: str = "competition-123", token: str = "abc", payload: bytes = b"PK\x05\x06" + b"\0" * 18):
    data = {"file": (io.BytesIO(payload), "project.zip"), "competition": competition}
    return http.post("/submit", headers=auth(token), data=data, content_type="multipart/form-data")


def test_healthz_needs_no_credentials(http) -> None:
    response = http.get("/healthz")
    assert response.status_code == 200
    assert response.get_json() == {"ok": True}


def test_check_requires_bearer_header(http) -> None:
    response = http.get("/check")
    assert response.status_code == 401
    assert response.get_json()["error"] == "Missing authorization header"

    response = http.get("/check", headers={"Authorization": "Token abc"})
    assert response.status_code == 401


def test_check_rejects_unknown_key(http) -> None:
    response = http.get("/check", headers=auth("wrong"))
    assert response.status_code == 403
    assert response.get_json()["error"] == "Invalid API key"


def test_check_returns_negotiated_format_and_quota(http) -> None:
    response = http.get("/check", headers=auth(), query_string={"competition": "competition-456"})

    assert response.status_code == 200
    assert response.get_json() == {
        "required_format": "py",
        "remaining_attempts": 5,
        "last_submission_by_user": None,
        "competition_name": "Advanced Competition",
    }


def test_check_on_unregistered_competition_uses_fallbacks(http) -> None:
    response = http.get("/check", headers=auth(), query_string={"competition": "future-cup"})

    body = response.get_json()
    assert response.status_code == 200
    assert body["remaining_attempts"] == 3
    assert body["competition_name"] == "Unknown Competition"
    assert body["required_format"] == "repo"


def test_competitions_lists_registered_entries(http) -> None:
    response = http.get("/competitions", headers=auth())

    assert response.status_code == 200
    competitions = response.get_json()["competitions"]
    assert [c["id"] for c in competitions] == ["competition-123", "competition-456"]
    assert competitions[0]["max_attempts"] == 3


def test_submit_without_file_is_rejected_without_using_an_attempt(http, ledger, registry) -> None:
    response = http.post(
        "/submit", headers=auth(), data={"competition": "competition-123"}, content_type="multipart/form-data"
    )

    assert response.status_code == 400
    assert response.get_json()["error"] == "No file uploaded"
    assert ledger.get_record("abc", "competition-123") is None


def test_submit_with_bad_key_is_forbidden(http, ledger) -> None:
    response = _submit(http, token="wrong")
    assert response.status_code == 403
    assert response.get_json()["code"] == "auth_error"
    assert ledger.get_record("wrong", "competition-123") is None


def test_three_submissions_then_quota_error(http, server_config: ServerConfig) -> None:
    remaining = []
    for _ in range(3):
        response = _submit(http)
        assert response.status_code == 200
        body = response.get_json()
        assert body["competition"] == "competition-123"
        assert body["message"] == "File received successfully"
        assert body["filename"].endswith("-project.zip")
        assert body["size"] == 22
        remaining.append(body["attempts_remaining"])

    assert remaining == [2, 1, 0]

    rejected = _submit(http)
    assert rejected.status_code == 403
    assert rejected.get_json() == {
        "error": "No submission attempts remaining for this competition",
        "code": "quota_exceeded",
    }

    stored = os.listdir(os.path.join(server_config.upload_dir, "competition-123"))
    assert len(stored) == 3
    assert all("-abc-" in name for name in stored)


def test_repeated_rejections_leave_the_ledger_unchanged(http, ledger, registry) -> None:
    competition = registry.get("competition-123")
    for _ in range(3):
        ledger.record_attempt("abc", competition)
    before = ledger.get_record("abc", "competition-123")

    for _ in range(3):
        assert _submit(http).status_code == 403

    after = ledger.get_record("abc", "competition-123")
    assert after == before
    assert ledger.attempts_remaining("abc", competition) == 0


def test_check_after_submit_reports_last_submission(http) -> None:
    submitted = _submit(http).get_json()

    body = http.get("/check", headers=auth(), query_string={"competition": "competition-123"}).get_json()

    assert body["remaining_attempts"] == 2
    assert body["last_submission_by_user"] == submitted["timestamp"] // 1000


def test_identities_have_separate_quotas(http) -> None:
    for _ in range(3):
        assert _submit(http).status_code == 200
    assert _submit(http).status_code == 403

    response = _submit(http, token="other-key")
    assert response.status_code == 200
    assert response.get_json()["attempts_remaining"] == 2


def test_simultaneous_submits_for_last_attempt_yield_one_success(app, ledger, registry) -> None:
    competition = registry.get("competition-123")
    ledger.record_attempt("abc", competition)
    ledger.record_attempt("abc", competition)

    barrier = threading.Barrier(2)
    statuses: List[int] = []
    lock = threading.Lock()

    def worker() -> None:
        client = app.test_client()
        barrier.wait()
        status = _submit(client).status_code
        with lock:
            statuses.append(status)

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(statuses) == [200, 403]
    assert ledger.get_record("abc", "competition-123").attempts_used == 3


def test_storage_failure_rolls_back_the_attempt(app, http, ledger, registry, tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-directory"
    blocker.write_text("x")
    app.extensions["optimus"]["service"].upload_dir = str(blocker)

    response = _submit(http)

    assert response.status_code == 500
    assert response.get_json()["code"] == "server_error"
    assert ledger.attempts_remaining("abc", registry.get("competition-123")) == 3


def test_oversized_upload_is_refused(tmp_path: Path) -> None:
    config = ServerConfig(upload_dir=str(tmp_path / "uploads"), api_keys=["abc"], max_content_length=1024)
    app = create_app(config)
    http = app.test_client()

    response = _submit(http, payload=b"x" * 4096)

    assert response.status_code == 413
    ledger = app.extensions["optimus"]["ledger"]
    assert ledger.get_record("abc", "competition-123") is None


def test_default_competition_is_used_when_none_given(http, server_config: ServerConfig) -> None:
    data = {"file": (io.BytesIO(b"zip"), "project.zip")}
    response = http.post("/submit", headers=auth(), data=data, content_type="multipart/form-data")

    assert response.status_code == 200
    assert response.get_json()["competition"] == "default"
    assert os.path.isdir(os.path.join(server_config.upload_dir, "default"))


def test_hostile_names_are_sanitised(http, server_config: ServerConfig) -> None:
    data = {"file": (io.BytesIO(b"zip"), "../../evil.zip"), "competition": "../escape"}
    response = http.post("/submit", headers=auth(), data=data, content_type="multipart/form-data")

    assert response.status_code == 200
    filename = response.get_json()["filename"]
    assert "/" not in filename and ".." not in filename
    uploads = Path(server_config.upload_dir)
    assert [p.parent.parent for p in uploads.rglob("*.zip")] == [uploads]


def test_load_competitions_file(tmp_path: Path) -> None:
    path = tmp_path / "competitions.yml"
    path.write_text(
        "default_format: py\n"
        "default_max_attempts: 2\n"
        "competitions:\n"
        "  - id: spring\n"
        "    name: Spring Cup\n"
        "    max_attempts: 4\n"
        "formats:\n"
        "  spring: py\n",
        encoding="utf-8",
    )
    config = load_competitions_file(str(path), ServerConfig(upload_dir=str(tmp_path / "u")))

    assert [c.id for c in config.competitions] == ["spring"]
    assert config.format_map == {"spring": ArchiveFormat.PY}
    assert config.default_format is ArchiveFormat.PY
    assert config.default_max_attempts == 2


def test_load_competitions_file_rejects_bad_entries(tmp_path: Path) -> None:
    path = tmp_path / "competitions.yml"
    path.write_text("competitions:\n  - id: broken\n    max_attempts: 0\n", encoding="utf-8")

    with pytest.raises(ConfigurationError):
        load_competitions_file(str(path), ServerConfig(upload_dir=str(tmp_path / "u")))


def test_pluggable_identity_resolver_keys_quota_by_identity(tmp_path: Path) -> None:
    resolver = StaticKeyResolver({"laptop-token": "team-7", "desktop-token": "team-7"})
    app = create_app(ServerConfig(upload_dir=str(tmp_path / "uploads")), resolver=resolver)
    http = app.test_client()

    assert _submit(http, token="laptop-token").get_json()["attempts_remaining"] == 2
    body = _submit(http, token="desktop-token").get_json()

    assert body["attempts_remaining"] == 1
    assert "-team-7-" in body["filename"]


def test_overlapping_submits_each_report_their_own_remaining_count(app) -> None:
    service = app.extensions["optimus"]["service"]
    # both requests have taken their attempt before either reads the clock
    barrier = threading.Barrier(2)

    def clock() -> float:
        barrier.wait(timeout=5)
        return 1700000000.0

    service.clock = clock
    remaining: List[int] = []
    lock = threading.Lock()

    def worker() -> None:
        body = _submit(app.test_client()).get_json()
        with lock:
            remaining.append(body["attempts_remaining"])

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(remaining) == [1, 2]
