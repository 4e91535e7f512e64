"""
Submission workflow.

Runs one send operation as a small state machine:

    INIT -> CHECKING -> [CONFIRMING] -> BUILDING -> SENDING -> DONE

FAILED can be reached from any state; DECLINED only from CONFIRMING. The
archive is built completely before anything is sent, and no step is ever
retried.
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from ..engine.archive import ArchiveBuilder, parse_compression_level, parse_exclusions
from ..exceptions import ConfigurationError, OptimusError, QuotaError
from ..models.models import ArchiveFormat, ArchiveReport, ArchiveRequest, CheckResult, SubmissionResult
from ..utils.history import SubmissionHistory
from ..utils.logger_config import get_logger
from .api import OptimusClient

logger = get_logger("workflow")

ConfirmCallback = Callable[[CheckResult, ArchiveFormat], bool]


class WorkflowState(str, Enum):
    INIT = "init"
    CHECKING = "checking"
    CONFIRMING = "confirming"
    BUILDING = "building"
    SENDING = "sending"
    DONE = "done"
    DECLINED = "declined"
    FAILED = "failed"


@dataclass
class SendOptions:
    """Effective settings for one send, after config file, env and flags are merged"""

    root: str
    api_key: Optional[str] = None
    server_url: Optional[str] = None
    competition_id: Optional[str] = None
    compression_level: Union[int, str, None] = 6
    force_format: Optional[str] = None
    auto_confirm: bool = False
    exclude: List[str] = field(default_factory=list)
    timeout: Optional[Union[float, Tuple[float, float]]] = None
    save_history: bool = False
    history_file: Optional[str] = None


@dataclass
class WorkflowOutcome:
    state: WorkflowState
    check: Optional[CheckResult] = None
    archive_format: Optional[ArchiveFormat] = None
    report: Optional[ArchiveReport] = None
    result: Optional[SubmissionResult] = None
    error: Optional[OptimusError] = None
    failed_in: Optional[WorkflowState] = None

    @property
    def exit_code(self) -> int:
        if self.state in (WorkflowState.DONE, WorkflowState.DECLINED):
            return 0
        return self.error.exit_code if self.error is not None else 1

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"state": self.state.value}
        if self.archive_format is not None:
            data["format"] = self.archive_format.value
        if self.check is not None:
            data["check"] = self.check.to_dict()
        if self.report is not None:
            data["files"] = self.report.file_count
            data["skipped"] = len(self.report.skipped)
        if self.result is not None:
            data["result"] = self.result.to_dict()
        if self.error is not None:
            data["error"] = {"category": self.error.category, "message": self.error.message}
            data["failed_in"] = self.failed_in.value if self.failed_in else None
        return data


class SubmissionWorkflow:
    """Check, confirm, build and send one archive"""

    def __init__(
        self,
        options: SendOptions,
        confirm: Optional[ConfirmCallback] = None,
        client_factory: Optional[Callable[[SendOptions], OptimusClient]] = None,
    ):
        """
        Args:
            options: Effective send settings
            confirm: Asked before building unless auto_confirm is set; a False
                answer ends the workflow in DECLINED
            client_factory: Builds the HTTP client (tests inject one bound to
                an in-process app)
        """
        self.options = options
        self.confirm = confirm
        self.client_factory = client_factory or self._default_client
        self.state = WorkflowState.INIT
        self.transitions: List[WorkflowState] = [WorkflowState.INIT]

    @staticmethod
    def _default_client(options: SendOptions) -> OptimusClient:
        return OptimusClient(options.server_url or "", options.api_key or "", timeout=options.timeout)

    def _enter(self, state: WorkflowState) -> None:
        logger.debug(f"Workflow {self.state.value} -> {state.value}")
        self.state = state
        self.transitions.append(state)

    def run(self) -> WorkflowOutcome:
        outcome = WorkflowOutcome(state=WorkflowState.INIT)
        try:
            self._run(outcome)
        except OptimusError as e:
            outcome.failed_in = self.state
            outcome.error = e
            self._enter(WorkflowState.FAILED)
            logger.error(f"Submission failed while {outcome.failed_in.value}: {e.message}")
        outcome.state = self.state
        self._save_history(outcome)
        return outcome

    def _run(self, outcome: WorkflowOutcome) -> None:
        opts = self.options

        # INIT: everything here fails before any I/O
        if not opts.api_key:
            raise ConfigurationError(
                "No API key configured (set api_key in the config file, pass --api-key or export OPTIMUS_API_KEY)"
            )
        if not opts.server_url:
            raise ConfigurationError("No server URL configured (set server_url or pass --server)")
        compression_level = parse_compression_level(opts.compression_level)
        forced = ArchiveFormat.parse(opts.force_format) if opts.force_format else None
        exclusions = parse_exclusions(opts.exclude)
        client = self.client_factory(opts)

        self._enter(WorkflowState.CHECKING)
        check = client.check(opts.competition_id)
        outcome.check = check
        archive_format = forced or check.required_format
        outcome.archive_format = archive_format
        logger.info(
            f"Competition '{check.competition_name}': format {archive_format.value}"
            f"{' (forced)' if forced else ''}, {check.remaining_attempts} attempts remaining"
        )
        if check.remaining_attempts <= 0:
            raise QuotaError("No submission attempts remaining for this competition")

        if not opts.auto_confirm:
            self._enter(WorkflowState.CONFIRMING)
            if self.confirm is None or not self.confirm(check, archive_format):
                logger.info("Submission declined")
                self._enter(WorkflowState.DECLINED)
                return

        self._enter(WorkflowState.BUILDING)
        request = ArchiveRequest(
            root_path=os.path.abspath(opts.root),
            format=archive_format,
            exclusions=exclusions,
            compression_level=compression_level,
        )
        builder = ArchiveBuilder.from_request(request)
        archive_name = f"{os.path.basename(request.root_path.rstrip(os.sep)) or 'submission'}.zip"

        with tempfile.TemporaryDirectory(prefix="optimus-") as workdir:
            archive_path = os.path.join(workdir, archive_name)
            outcome.report = builder.build(request.root_path, archive_path)
            for path, reason in outcome.report.skipped:
                logger.warning(f"Not archived: {path} ({reason})")

            self._enter(WorkflowState.SENDING)
            outcome.result = client.submit(archive_path, opts.competition_id)

        self._enter(WorkflowState.DONE)
        logger.info(
            f"Submitted {outcome.result.filename} ({outcome.result.size_bytes} bytes), "
            f"{outcome.result.attempts_remaining} attempts remaining"
        )

    def _save_history(self, outcome: WorkflowOutcome) -> None:
        if not self.options.save_history or not self.options.history_file:
            return
        entry = {"root": os.path.abspath(self.options.root), "competition_id": self.options.competition_id}
        entry.update(outcome.to_dict())
        try:
            SubmissionHistory(self.options.history_file).append(entry)
        except OSError as e:
            logger.warning(f"Could not save submission history: {e}")
