"""
Error taxonomy shared by the client, the archive builder and the service.

Every user-visible failure is one of these categories. The CLI turns the
category into a message and an exit code; the HTTP app turns it into a
status code and a JSON body.
"""

from typing import Any, Dict, Optional


class OptimusError(Exception):
    """Base class for all categorised Optimus failures"""

    category = "error"
    exit_code = 1
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.category}


class ConfigurationError(OptimusError):
    """Missing or malformed configuration (credential, server URL, file)"""

    category = "configuration_error"
    exit_code = 2
    status_code = 500


class ValidationError(OptimusError):
    """A parameter is outside its allowed range or set"""

    category = "validation_error"
    exit_code = 2
    status_code = 400


class AuthError(OptimusError):
    """Missing or rejected credential"""

    category = "auth_error"
    exit_code = 3
    status_code = 403


class NetworkError(OptimusError):
    """Transport failure or timeout talking to the server"""

    category = "network_error"
    exit_code = 4
    status_code = 503


class ArchiveError(OptimusError):
    """
    Archive construction failure.

    Raised for the whole build when the root directory is unusable or the
    destination cannot be written. Per-file problems are recorded on the
    build report instead of being raised.
    """

    category = "archive_error"
    exit_code = 5
    status_code = 500

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class QuotaError(OptimusError):
    """No submission attempts remain for the competition"""

    category = "quota_exceeded"
    exit_code = 6
    status_code = 403


class ServerError(OptimusError):
    """Unexpected response or internal failure on the service side"""

    category = "server_error"
    exit_code = 7
    status_code = 500
