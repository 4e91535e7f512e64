from __future__ import annotations

from pathlib import Path

import pytest

from optimus.client.api import OptimusClient
from optimus.server.server import ServerConfig, create_app
from tests.helpers import API_KEY, FlaskSession, write_tree


@pytest.fixture
def server_config(tmp_path: Path) -> ServerConfig:
    return ServerConfig(upload_dir=str(tmp_path / "uploads"), api_keys=[API_KEY, "other-key"])


@pytest.fixture
def app(server_config: ServerConfig):
    app = create_app(server_config)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def http(app):
    return app.test_client()


@pytest.fixture
def ledger(app):
    return app.extensions["optimus"]["ledger"]


@pytest.fixture
def registry(app):
    return app.extensions["optimus"]["registry"]


@pytest.fixture
def session(app) -> FlaskSession:
    return FlaskSession(app)


@pytest.fixture
def make_client(session: FlaskSession):
    """Client factory usable as SubmissionWorkflow(client_factory=...)"""
    def factory(options=None) -> OptimusClient:
        key = options.api_key if options is not None else API_KEY
        return OptimusClient("http://optimus.test", key, session=session)

    return factory


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """A small mixed-content project directory"""
    return write_tree(
        tmp_path / "project",
        {
            "main.py": "print('hello')\n",
            "requirements.txt": "requests\n",
            "report.docx": "not really a docx",
            "README.md": "# Project\n",
            "pkg/__init__.py": "",
            "pkg/core.py": "VALUE = 1\n",
            "pkg/data.csv": "a,b\n1,2\n",
            ".git/config": "[core]\n",
            ".git/objects/ab/cdef": "blob",
            "node_modules/left-pad/index.js": "module.exports = 1;\n",
            ".env": "SECRET=1\n",
            "pkg/__pycache__/core.cpython-311.pyc": "bytecode",
        },
    )


@pytest.fixture(autouse=True)
def _no_env_credentials(monkeypatch):
    for name in ("OPTIMUS_API_KEY", "OPTIMUS_SERVER_URL", "OPTIMUS_COMPETITION_ID"):
        monkeypatch.delenv(name, raising=False)
