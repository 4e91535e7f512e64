"""Command-line entry point: ``optimus init | send | check | competitions``."""

from __future__ import annotations

import argparse
import os
import sys
from datetime import datetime
from typing import List, Optional

from ..engine.archive import COMPRESSION_PRESETS, find_repo_root
from ..exceptions import OptimusError
from ..models.models import ArchiveFormat, CheckResult
from ..utils.config_manager import DEFAULT_CONFIG_PATH, ConfigManager, write_default_config
from ..utils.logger_config import get_logger, setup_logging
from .api import OptimusClient
from .workflow import SendOptions, SubmissionWorkflow, WorkflowOutcome, WorkflowState

logger = get_logger("cli")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="optimus",
        description="Package a directory and submit it to an Optimus competition server.",
    )
    parser.add_argument("--verbose", "-v", action="count", default=0, help="More log output (-vv for debug)")
    parser.add_argument("--log-file", help="Also write logs to this file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init = subparsers.add_parser("init", help="Write a default configuration file")
    init.add_argument("--config", default=DEFAULT_CONFIG_PATH, help=f"Path to write (default: {DEFAULT_CONFIG_PATH})")
    init.add_argument("--api-key", help="API key to store in the file")
    init.add_argument("--competition-id", help="Competition to store in the file")
    init.add_argument("--force", action="store_true", help="Overwrite an existing file")

    def add_connection_args(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("--config", help=f"Configuration file (default: ./{DEFAULT_CONFIG_PATH} if present)")
        sub.add_argument("--api-key", help="API key (falls back to OPTIMUS_API_KEY)")
        sub.add_argument("--server", help="Server base URL, e.g. http://localhost:3000")
        sub.add_argument("--timeout", type=float, help="Connect/read timeout in seconds")

    send = subparsers.add_parser("send", help="Check, build and submit an archive")
    add_connection_args(send)
    send.add_argument("--competition-id", help="Competition to submit to")
    send.add_argument(
        "--compression",
        help=f"Compression level 0-9 or one of: {', '.join(COMPRESSION_PRESETS)}",
    )
    send.add_argument(
        "--force-format",
        choices=[f.value for f in ArchiveFormat],
        help="Package with this format instead of the one the server asks for",
    )
    send.add_argument("--auto-confirm", action="store_true", default=None, help="Do not ask before submitting")
    send.add_argument("--path", help="Directory to package (default: enclosing git repository or cwd)")
    send.add_argument("--exclude", action="append", default=[], help="Extra exclusion pattern (repeatable)")

    check = subparsers.add_parser("check", help="Show required format and remaining attempts")
    add_connection_args(check)
    check.add_argument("--competition-id", help="Competition to check")

    competitions = subparsers.add_parser("competitions", help="List competitions known to the server")
    add_connection_args(competitions)

    return parser.parse_args(argv)


def load_config(args: argparse.Namespace) -> ConfigManager:
    """Config file, then environment fallbacks, then command-line flags"""
    config = ConfigManager(args.config)
    config.override("api_key", args.api_key)
    config.override("server_url", args.server)
    config.override("timeout", args.timeout)
    config.override("competition_id", getattr(args, "competition_id", None))
    return config


def format_timestamp(seconds: Optional[float]) -> str:
    if seconds is None:
        return "never"
    return datetime.fromtimestamp(seconds).strftime("%Y-%m-%d %H:%M:%S")


def print_check(check: CheckResult, archive_format: Optional[ArchiveFormat] = None) -> None:
    print(f"Competition:        {check.competition_name}")
    print(f"Required format:    {check.required_format.value}")
    if archive_format is not None and archive_format != check.required_format:
        print(f"Format to be used:  {archive_format.value} (forced)")
    print(f"Remaining attempts: {check.remaining_attempts}")
    print(f"Last submission:    {format_timestamp(check.last_submission_timestamp)}")


def prompt_confirm(check: CheckResult, archive_format: ArchiveFormat) -> bool:
    """Interactive yes/no confirmation on the terminal"""
    print_check(check, archive_format)
    try:
        answer = input("Submit now? This uses one attempt. [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def build_send_options(args: argparse.Namespace, config: ConfigManager) -> SendOptions:
    configured_format = config.get("format")
    force_format = args.force_format
    if not force_format and configured_format and str(configured_format).lower() != "auto":
        force_format = str(configured_format)

    auto_confirm = args.auto_confirm if args.auto_confirm is not None else bool(config.get("preferences.auto_confirm"))

    root = args.path
    if not root:
        repo_root = find_repo_root()
        root = str(repo_root) if repo_root else os.getcwd()

    return SendOptions(
        root=root,
        api_key=config.get("api_key"),
        server_url=config.get("server_url"),
        competition_id=config.get("competition_id"),
        compression_level=args.compression if args.compression is not None else config.get("compression_level"),
        force_format=force_format,
        auto_confirm=auto_confirm,
        exclude=list(config.get("exclude") or []) + list(args.exclude),
        timeout=config.get("timeout"),
        save_history=bool(config.get("preferences.save_history")),
        history_file=config.get("preferences.history_file"),
    )


def report_outcome(outcome: WorkflowOutcome) -> None:
    if outcome.state is WorkflowState.DONE and outcome.result is not None:
        result = outcome.result
        print(f"Submitted {result.filename} ({result.size_bytes} bytes) to {result.competition_id}")
        print(f"Remaining attempts: {result.attempts_remaining}")
        if outcome.report is not None and outcome.report.skipped:
            print(f"Warning: {len(outcome.report.skipped)} file(s) could not be archived", file=sys.stderr)
    elif outcome.state is WorkflowState.DECLINED:
        print("Submission cancelled; no attempt was used.")
    elif outcome.error is not None:
        print(f"Error [{outcome.error.category}]: {outcome.error.message}", file=sys.stderr)


def cmd_init(args: argparse.Namespace) -> int:
    write_default_config(args.config, api_key=args.api_key, competition_id=args.competition_id, force=args.force)
    print(f"Wrote {args.config}. Edit it to set your API key and preferences, then run 'optimus send'.")
    return 0


def cmd_send(args: argparse.Namespace) -> int:
    config = load_config(args)
    options = build_send_options(args, config)
    outcome = SubmissionWorkflow(options, confirm=prompt_confirm).run()
    report_outcome(outcome)
    return outcome.exit_code


def cmd_check(args: argparse.Namespace) -> int:
    config = load_config(args)
    client = OptimusClient(config.get("server_url") or "", config.get("api_key") or "", timeout=config.get("timeout"))
    print_check(client.check(config.get("competition_id")))
    return 0


def cmd_competitions(args: argparse.Namespace) -> int:
    config = load_config(args)
    client = OptimusClient(config.get("server_url") or "", config.get("api_key") or "", timeout=config.get("timeout"))
    competitions = client.list_competitions()
    if not competitions:
        print("No competitions registered.")
    for competition in competitions:
        print(f"{competition.id}\t{competition.name}\tmax attempts: {competition.max_attempts}\tformat: {competition.format.value}")
    return 0


COMMANDS = {
    "init": cmd_init,
    "send": cmd_send,
    "check": cmd_check,
    "competitions": cmd_competitions,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    level = {0: "WARNING", 1: "INFO"}.get(args.verbose, "DEBUG")
    setup_logging(level=level, log_file=args.log_file)
    try:
        return COMMANDS[args.command](args)
    except OptimusError as e:
        print(f"Error [{e.category}]: {e.message}", file=sys.stderr)
        return e.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
