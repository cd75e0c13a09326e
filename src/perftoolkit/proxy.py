"""Client for a BrowserMob-style capture proxy REST API.

Only the calls the recorder needs:

  - ``POST   /proxy/``                    open a session (optionally on a port)
  - ``DELETE /proxy/<port>``              close it
  - ``PUT    /proxy/<port>/har``          start a new HAR, returns the previous one
  - ``PUT    /proxy/<port>/blacklist``    and ``/whitelist``
  - ``PUT    /proxy/<port>/wait``         wait until traffic is quiet

Uses urllib (no external dependencies).
"""

import json
import logging
import re
import urllib.error
import urllib.parse
import urllib.request
from typing import Optional, Union

from perftoolkit.errors import PlanIOError

logger = logging.getLogger(__name__)

DEFAULT_PROXY = "localhost:9090"

DEFAULT_TIMEOUT = 30

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)


class ProxyError(PlanIOError):
    """The capture proxy is unreachable or answered with an error."""


def normalize_proxy_url(proxy_url: str) -> str:
    """Prefix ``http://`` when no scheme is given; drop trailing slashes."""
    proxy_url = proxy_url.strip()
    if not _SCHEME_RE.match(proxy_url):
        proxy_url = "http://" + proxy_url
    return proxy_url.rstrip("/")


class ProxyClient:
    """One capture session on the proxy.

    Args:
        proxy_url: Address of the proxy's REST API (``host:port`` or a URL).
        port: Port of an already opened session.
        timeout: Socket timeout for each call, in seconds.
    """

    def __init__(
        self,
        proxy_url: str = DEFAULT_PROXY,
        port: Optional[Union[int, str]] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.proxy_url = normalize_proxy_url(proxy_url)
        self.port = int(port) if port not in (None, "") else None
        self.timeout = timeout

    @property
    def hostname(self) -> str:
        return urllib.parse.urlsplit(self.proxy_url).hostname or "localhost"

    @property
    def address(self) -> str:
        """``host:port`` browsers should use as their HTTP proxy."""
        return f"{self.hostname}:{self.port}"

    # ── Session ──

    def create_session(self, port: Optional[Union[int, str]] = None) -> str:
        """Open a capture session and return the ``host:port`` it listens on."""
        params = {"port": str(port)} if port not in (None, "") else None
        body = self._request("POST", "/proxy/", params)
        try:
            self.port = int(json.loads(body)["port"])
        except (ValueError, KeyError, TypeError) as exc:
            raise ProxyError(f"Unexpected response opening proxy session: {body[:200]!r}") from exc
        logger.info("Proxy session open at %s", self.address)
        return self.address

    def close_session(self) -> None:
        if self.port is None:
            return
        self._request("DELETE", f"/proxy/{self.port}")
        logger.info("Proxy session %s closed", self.port)

    # ── Capture ──

    def new_har(self, label: str = "") -> bytes:
        """Start recording a new HAR; returns the raw body of the previous one."""
        return self._request("PUT", self._session_path("har"), {
            "captureContent": "true",
            "initialPageRef": label,
            "captureHeaders": "true",
            "captureBinaryContent": "true",
        })

    def get_har(self, label: str = "") -> dict:
        """Return the HAR recorded since the last ``new_har`` and start a new one."""
        body = self.new_har(label)
        if not body.strip():
            raise ProxyError(f"Proxy returned no HAR for capture '{label}'")
        try:
            return json.loads(body)
        except json.JSONDecodeError as exc:
            raise ProxyError(f"Proxy returned an invalid HAR for '{label}': {exc}") from exc

    def blacklist(self, regex: str, status: int) -> None:
        self._request("PUT", self._session_path("blacklist"), {
            "regex": regex, "status": str(status),
        })

    def whitelist(self, regex: str, status: int) -> None:
        self._request("PUT", self._session_path("whitelist"), {
            "regex": regex, "status": str(status),
        })

    def wait_for_traffic_to_stop(self, quiet_period: float, timeout: float) -> None:
        """Block until no traffic was seen for ``quiet_period`` seconds."""
        self._request("PUT", self._session_path("wait"), {
            "quietPeriodInMs": str(int(quiet_period * 1000)),
            "timeoutInMs": str(int(timeout * 1000)),
        })

    # ── Internals ──

    def _session_path(self, endpoint: str) -> str:
        if self.port is None:
            raise ProxyError("No proxy session is open")
        return f"/proxy/{self.port}/{endpoint}"

    def _request(self, method: str, path: str, params: Optional[dict] = None) -> bytes:
        url = self.proxy_url + path
        data = urllib.parse.urlencode(params).encode("utf-8") if params else None
        headers = {"Content-Type": "application/x-www-form-urlencoded"} if data else {}
        req = urllib.request.Request(url, data=data, headers=headers, method=method)
        logger.debug("%s %s %s", method, url, params or "")
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                return resp.read()
        except urllib.error.HTTPError as exc:
            raise ProxyError(f"Proxy returned HTTP {exc.code} for {method} {url}") from exc
        except (urllib.error.URLError, OSError) as exc:
            raise ProxyError(f"Proxy request {method} {url} failed: {exc}") from exc
