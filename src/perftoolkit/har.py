"""HAR parsing: turn a proxy capture into page-producing requests.

Only entries that produce a page are kept: those with an empty response or
an HTML response.  POST entries merge their form-encoded body parameters
with any URL query parameters (the URL wins on a shared name).  Every other
method and content type is ignored.  Capture order is preserved.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union
from urllib.parse import parse_qsl, urlsplit

from perftoolkit.errors import CaptureMismatchError, PlanIOError

logger = logging.getLogger(__name__)

SUPPORTED_METHODS = ("GET", "POST")


@dataclass
class CapturedRequest:
    """A single page request worth replaying in the load-test plan."""

    path: str
    method: str = "GET"
    query: dict[str, str] = field(default_factory=dict)

    def as_dict(self) -> dict:
        return {"path": self.path, "method": self.method, "query": dict(self.query)}

    @classmethod
    def from_dict(cls, data: Any) -> "CapturedRequest":
        """Build a request from its saved JSON form.

        Raises:
            CaptureMismatchError: If ``data`` lacks a path or a supported method.
        """
        if not isinstance(data, dict) or not data.get("path"):
            raise CaptureMismatchError(f"Saved request is malformed: {data!r}")
        method = str(data.get("method", "GET")).upper()
        if method not in SUPPORTED_METHODS:
            raise CaptureMismatchError(f"Saved request has unsupported method: {method}")
        query = data.get("query") or {}
        if not isinstance(query, dict):
            raise CaptureMismatchError(f"Saved request query must be an object: {data!r}")
        return cls(
            path=data["path"],
            method=method,
            query={str(k): "" if v is None else str(v) for k, v in query.items()},
        )


def parse_har(har: dict, method: Optional[str] = None) -> list[CapturedRequest]:
    """Extract page-producing requests from parsed HAR data.

    Args:
        har: The decoded HAR document (``{"log": {"entries": [...]}}``).
        method: Keep only ``"GET"`` or ``"POST"`` requests when given.

    Raises:
        ValueError: If ``method`` is not GET or POST.
    """
    if method is not None:
        method = method.upper()
        if method not in SUPPORTED_METHODS:
            raise ValueError(f"Wrong request type passed while getting har data: {method}")

    entries = (har.get("log") or {}).get("entries") or []
    requests: list[CapturedRequest] = []

    for entry in entries:
        request = entry.get("request") or {}
        response = entry.get("response")
        if response and not _is_html(response):
            continue

        entry_method = str(request.get("method", "GET")).upper()
        url = request.get("url", "")
        parts = urlsplit(url)
        query = dict(parse_qsl(parts.query, keep_blank_values=True))

        if entry_method == "POST":
            params = ((request.get("postData") or {}).get("params")) or []
            merged = {p["name"]: p.get("value", "") for p in params if "name" in p}
            merged.update(query)
            query = merged
        elif entry_method != "GET":
            logger.debug("Ignoring %s %s", entry_method, url)
            continue

        requests.append(CapturedRequest(
            path=parts.path,
            method=entry_method,
            query=query,
        ))

    if method is not None:
        requests = [r for r in requests if r.method == method]
    return requests


def load_har(path: Union[str, Path]) -> dict:
    """Read a HAR file from disk."""
    path = Path(path)
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise PlanIOError(f"HAR file not found: {path}") from None
    except (OSError, json.JSONDecodeError) as exc:
        raise PlanIOError(f"Could not read HAR file {path}: {exc}") from exc


def _is_html(response: dict) -> bool:
    mime = ((response.get("content") or {}).get("mimeType") or "").lower()
    return mime.startswith("text/html")
