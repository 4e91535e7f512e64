from __future__ import annotations

import io
import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

API_KEY = "abc"


class FakeResponse:
    """The subset of requests.Response the client reads"""

    def __init__(self, status_code: int, body: bytes):
        self.status_code = status_code
        self.text = body.decode("utf-8", errors="replace")
        self.reason = ""

    def json(self) -> Any:
        return json.loads(self.text)


class FlaskSession:
    """Routes requests.Session.request calls into a Flask test client."""

    def __init__(self, app):
        self.client = app.test_client()
        self.calls: List[Tuple[str, str]] = []

    def request(self, method: str, url: str, headers: Optional[Dict[str, str]] = None, timeout=None,
                params=None, data=None, files=None, **kwargs) -> FakeResponse:
        path = urlsplit(url).path
        self.calls.append((method, path))
        if method == "GET":
            response = self.client.get(path, headers=headers, query_string=params)
        else:
            form: Dict[str, Any] = dict(data or {})
            for name, (filename, fh, mimetype) in (files or {}).items():
                form[name] = (io.BytesIO(fh.read()), filename, mimetype)
            response = self.client.post(path, headers=headers, data=form, content_type="multipart/form-data")
        return FakeResponse(response.status_code, response.get_data())


def auth(token: str = API_KEY) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def write_tree(root: Path, files: Dict[str, str]) -> Path:
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root


def walk_relative(root: Path) -> List[str]:
    result = []
    for dirpath, _, filenames in os.walk(root):
        for name in filenames:
            result.append(Path(dirpath, name).relative_to(root).as_posix())
    return sorted(result)
