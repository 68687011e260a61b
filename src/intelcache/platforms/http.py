from __future__ import annotations

import sys
import threading
import time
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import (
    DEFAULT_RPM,
    DEFAULT_TIMEOUT_S,
    RETRY_ALLOWED_METHODS,
    RETRY_BACKOFF_FACTOR,
    RETRY_STATUS_FORCELIST,
    USER_AGENT,
)
from ..core.errors import ConfigError


def make_session(token: str) -> requests.Session:
    s = requests.Session()
    retry = Retry(
        total=6,
        backoff_factor=RETRY_BACKOFF_FACTOR,
        status_forcelist=RETRY_STATUS_FORCELIST,
        allowed_methods=RETRY_ALLOWED_METHODS,
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    s.mount("https://", adapter)
    s.mount("http://", adapter)
    s.headers.update(
        {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Authorization": f"Bearer {token}",
            "User-Agent": USER_AGENT,
        }
    )
    return s


class HttpPlatform:
    """
    Shared plumbing for platform clients: session, pacing, debug output.
    Subclasses implement search() / entity_kinds() / to_cached_entity().
    """

    def __init__(
        self,
        *,
        platform_id: str,
        url: str,
        token: str,
        rpm: int = DEFAULT_RPM,
        debug: bool = False,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not token:
            raise ConfigError(
                f"platform {platform_id!r} has no API token. "
                "Set `token` (or `token_env`) in the platforms file."
            )
        self.platform_id = platform_id
        self.base_url = url.rstrip("/")
        self._session = session or make_session(token)
        self._timeout = DEFAULT_TIMEOUT_S
        self._debug = bool(debug)
        self._pace_lock = threading.Lock()
        self._set_rpm(rpm)

    # pacing -------------------------------------------------------------
    def _set_rpm(self, rpm: int) -> None:
        rpm = max(1, int(rpm))
        self._min_interval = 60.0 / rpm
        self._last_ts = 0.0

    def set_rpm(self, rpm: int) -> None:
        self._set_rpm(rpm)

    def _pace(self) -> None:
        # bucket fetches share one client across threads
        with self._pace_lock:
            now = time.monotonic()
            wait = self._min_interval - (now - self._last_ts)
            if wait > 0:
                time.sleep(wait)
            self._last_ts = time.monotonic()

    # helpers ------------------------------------------------------------
    def _post(
        self,
        path: str,
        payload: Dict[str, Any],
        params: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        self._pace()
        r = self._session.post(
            f"{self.base_url}{path}",
            json=payload,
            params=params,
            timeout=self._timeout,
        )
        if self._debug:
            print(
                f"[{self.platform_id} POST] url={r.url} status={r.status_code}",
                file=sys.stderr,
            )
            print(
                f"[{self.platform_id} POST] body={r.text[:400]}",
                file=sys.stderr,
            )
        r.raise_for_status()
        return r.json()
