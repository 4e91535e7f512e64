"""Flask service exposing the check, submit and competitions endpoints."""

from __future__ import annotations

import argparse
import os
import time
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Callable, Dict, List, Optional

import yaml
from flask import Flask, g, jsonify, request
from werkzeug.datastructures import FileStorage
from werkzeug.exceptions import RequestEntityTooLarge
from werkzeug.utils import secure_filename

from ..engine.ledger import AttemptLedger
from ..exceptions import ConfigurationError, OptimusError, QuotaError, ServerError
from ..models.models import ArchiveFormat, Competition, SubmissionResult, generate_id
from ..utils.logger_config import get_logger, setup_logging
from .identity import IdentityResolver, StaticKeyResolver
from .negotiator import DEFAULT_COMPETITION_ID, DEMO_COMPETITIONS, CompetitionRegistry, Negotiator

LOGGER = get_logger("server")

QUOTA_MESSAGE = "No submission attempts remaining for this competition"
MAX_UPLOAD_BYTES = 50 * 1024 * 1024


@dataclass
class ServerConfig:
    """Service configuration, overridable via CLI or environment variables."""

    host: str = "0.0.0.0"
    port: int = 3000
    upload_dir: str = "uploads"
    api_keys: List[str] = field(default_factory=list)
    default_format: ArchiveFormat = ArchiveFormat.REPO
    default_max_attempts: int = 3
    competitions: List[Competition] = field(default_factory=lambda: list(DEMO_COMPETITIONS))
    format_map: Dict[str, ArchiveFormat] = field(default_factory=dict)
    max_content_length: int = MAX_UPLOAD_BYTES


def load_competitions_file(path: str, config: ServerConfig) -> ServerConfig:
    """
    Apply a YAML competitions document to ``config``.

    Recognised keys: ``competitions`` (list of {id, name, max_attempts,
    format}), ``formats`` (competition id -> format), ``default_format`` and
    ``default_max_attempts``.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot load competitions file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Competitions file {path} must contain a mapping")

    try:
        if "competitions" in data:
            config.competitions = [Competition.from_dict(item) for item in data["competitions"] or []]
        if "formats" in data:
            config.format_map = {
                str(cid): ArchiveFormat.parse(fmt) for cid, fmt in (data["formats"] or {}).items()
            }
        if "default_format" in data:
            config.default_format = ArchiveFormat.parse(data["default_format"])
        if "default_max_attempts" in data:
            config.default_max_attempts = int(data["default_max_attempts"])
    except (KeyError, TypeError, ValueError, OptimusError) as e:
        raise ConfigurationError(f"Invalid competitions file {path}: {e}") from e
    return config


class SubmissionService:
    """Accepts archives against the attempt ledger and stores them on disk"""

    def __init__(
        self,
        registry: CompetitionRegistry,
        ledger: AttemptLedger,
        upload_dir: str,
        clock: Callable[[], float] = time.time,
    ):
        self.registry = registry
        self.ledger = ledger
        self.upload_dir = upload_dir
        self.clock = clock

    def submit(self, identity: str, competition_id: str, upload: FileStorage) -> SubmissionResult:
        """
        Record an attempt, then persist the upload.

        An attempt is only counted for an archive that is actually stored:
        when persistence fails the attempt is rolled back before the error
        propagates.

        Raises:
            QuotaError: No attempts remain; nothing is changed
            ServerError: The archive could not be stored
        """
        competition = self.registry.get(competition_id)
        remaining = self.ledger.record_attempt(identity, competition)
        if remaining is None:
            LOGGER.info(f"Rejected submission for competition {competition.id}: quota exhausted")
            raise QuotaError(QUOTA_MESSAGE)

        now = self.clock()
        timestamp_ms = int(now * 1000)
        try:
            filename, size = self._store(competition.id, identity, upload, timestamp_ms)
        except OSError as e:
            self.ledger.rollback_attempt(identity, competition)
            LOGGER.error(f"Failed to store submission for competition {competition.id}: {e}")
            raise ServerError("Failed to store submission") from e

        self.ledger.mark_submitted(identity, competition.id, now)
        LOGGER.info(
            f"Received {filename} ({size} bytes) for competition {competition.id}, remaining attempts: {remaining}"
        )
        return SubmissionResult(
            filename=filename,
            size_bytes=size,
            timestamp=timestamp_ms,
            attempts_remaining=remaining,
            competition_id=competition.id,
        )

    def _store(self, competition_id: str, identity: str, upload: FileStorage, timestamp_ms: int):
        target_dir = os.path.join(self.upload_dir, secure_filename(competition_id) or DEFAULT_COMPETITION_ID)
        os.makedirs(target_dir, exist_ok=True)

        original = secure_filename(upload.filename or "") or "submission.zip"
        owner = secure_filename(identity) or "anonymous"
        filename = f"{timestamp_ms}-{owner}-{generate_id()[:8]}-{original}"
        path = os.path.join(target_dir, filename)

        try:
            with open(path, "xb") as out:
                upload.save(out)
                size = out.tell()
        except OSError:
            if os.path.exists(path):
                os.remove(path)
            raise
        return filename, size


def _bearer_token(header: Optional[str]) -> Optional[str]:
    if not header or not header.startswith("Bearer "):
        return None
    return header[len("Bearer "):].strip()


def create_app(
    config: ServerConfig,
    resolver: Optional[IdentityResolver] = None,
    ledger: Optional[AttemptLedger] = None,
) -> Flask:
    """Create and configure the Flask application."""
    registry = CompetitionRegistry(
        config.competitions,
        format_map=config.format_map,
        default_format=config.default_format,
        default_max_attempts=config.default_max_attempts,
    )
    ledger = ledger or AttemptLedger()
    resolver = resolver or StaticKeyResolver(config.api_keys)
    negotiator = Negotiator(registry, ledger)
    service = SubmissionService(registry, ledger, config.upload_dir)

    os.makedirs(config.upload_dir, exist_ok=True)

    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = config.max_content_length
    app.extensions["optimus"] = {
        "registry": registry,
        "ledger": ledger,
        "negotiator": negotiator,
        "service": service,
    }

    def require_identity(view: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(view)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            token = _bearer_token(request.headers.get("Authorization"))
            if token is None:
                return jsonify({"error": "Missing authorization header", "code": "auth_error"}), 401
            identity = resolver.resolve(token)
            if identity is None:
                LOGGER.warning(f"Rejected request with invalid API key on {request.path}")
                return jsonify({"error": "Invalid API key", "code": "auth_error"}), 403
            g.identity = identity
            return view(*args, **kwargs)

        return wrapper

    @app.errorhandler(OptimusError)
    def handle_optimus_error(exc: OptimusError) -> Any:
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(RequestEntityTooLarge)
    def handle_too_large(exc: RequestEntityTooLarge) -> Any:
        limit_mb = config.max_content_length // (1024 * 1024)
        return jsonify({"error": f"File exceeds the {limit_mb}MB upload limit", "code": "validation_error"}), 413

    @app.route("/healthz", methods=["GET"])
    def health() -> Any:
        return jsonify({"ok": True})

    @app.route("/check", methods=["GET"])
    @require_identity
    def check() -> Any:
        competition_id = request.args.get("competition") or DEFAULT_COMPETITION_ID
        result = negotiator.check(g.identity, competition_id)
        return jsonify(result.to_dict())

    @app.route("/submit", methods=["POST"])
    @require_identity
    def submit() -> Any:
        upload = request.files.get("file")
        if upload is None or not upload.filename:
            return jsonify({"error": "No file uploaded", "code": "validation_error"}), 400
        competition_id = request.form.get("competition") or DEFAULT_COMPETITION_ID
        result = service.submit(g.identity, competition_id, upload)
        return jsonify(result.to_dict())

    @app.route("/competitions", methods=["GET"])
    @require_identity
    def competitions() -> Any:
        return jsonify({"competitions": [c.to_dict() for c in registry.list()]})

    return app


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Start the Optimus submission service")
    parser.add_argument("--host", default=os.getenv("OPTIMUS_SERVER_HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.getenv("OPTIMUS_SERVER_PORT", "3000")))
    parser.add_argument("--upload-dir", default=os.getenv("OPTIMUS_UPLOAD_DIR", "uploads"))
    parser.add_argument(
        "--api-key",
        action="append",
        dest="api_keys",
        help="Accepted API key (repeatable). Defaults to the comma-separated OPTIMUS_API_KEYS.",
    )
    parser.add_argument(
        "--default-format",
        choices=[f.value for f in ArchiveFormat],
        default=os.getenv("OPTIMUS_DEFAULT_FORMAT", ArchiveFormat.REPO.value),
    )
    parser.add_argument("--default-max-attempts", type=int, default=None)
    parser.add_argument("--competitions", help="YAML file with competitions and format mapping")
    parser.add_argument("--log-file", help="Optional log file path")
    parser.add_argument("--debug", action="store_true", help="Enable Flask debug mode")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> ServerConfig:
    api_keys = args.api_keys
    if not api_keys:
        api_keys = [k.strip() for k in os.getenv("OPTIMUS_API_KEYS", "").split(",") if k.strip()]

    config = ServerConfig(
        host=args.host,
        port=args.port,
        upload_dir=args.upload_dir,
        api_keys=api_keys,
        default_format=ArchiveFormat.parse(args.default_format),
    )
    if args.competitions:
        load_competitions_file(args.competitions, config)
    if args.default_max_attempts is not None:
        if args.default_max_attempts <= 0:
            raise ConfigurationError("--default-max-attempts must be positive")
        config.default_max_attempts = args.default_max_attempts
    return config


def main(argv: Optional[List[str]] = None) -> None:
    args = _parse_args(argv)
    setup_logging(level="DEBUG" if args.debug else "INFO", log_file=args.log_file)
    try:
        config = build_config(args)
    except OptimusError as e:
        LOGGER.error(e.message)
        raise SystemExit(e.exit_code)

    if not config.api_keys:
        LOGGER.warning("No API keys configured; every authenticated request will be rejected")

    app = create_app(config)
    LOGGER.info(f"Starting Optimus server on {config.host}:{config.port} (uploads in {config.upload_dir})")
    app.run(host=config.host, port=config.port, debug=args.debug, threaded=True)


if __name__ == "__main__":
    main()
