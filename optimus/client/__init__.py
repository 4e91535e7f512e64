from .api import OptimusClient
from .workflow import SendOptions, SubmissionWorkflow, WorkflowOutcome, WorkflowState

__all__ = [
    "OptimusClient",
    "SendOptions",
    "SubmissionWorkflow",
    "WorkflowOutcome",
    "WorkflowState",
]
