"""
Fetcher: retrieves a vendor's raw catalog payload.

API integrations are a single authenticated GET; SCRAPER integrations run an
opaque executable through a ``ScraperInvoker``. The fetcher does not retry;
retry policy belongs to whoever schedules runs.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

import httpx

from .db import AuthType, IntegrationType
from .db.base import utcnow
from .errors import FetchError, MissingCredentials

logger = logging.getLogger(__name__)

MAX_STDERR_BYTES = 4096


@dataclass
class FetchResult:
    raw: Any
    source: str  # http, file
    fetched_at: datetime = field(default_factory=utcnow)


def auth_headers(auth_type: Optional[str], api_key: Optional[str]) -> Dict[str, str]:
    """Request headers for an integration's auth scheme."""
    if not api_key or auth_type in (None, AuthType.NONE.value):
        return {}
    if auth_type == AuthType.BEARER.value:
        return {"Authorization": f"Bearer {api_key}"}
    if auth_type == AuthType.BASIC.value:
        token = base64.b64encode(api_key.encode("utf-8")).decode("ascii")
        return {"Authorization": f"Basic {token}"}
    if auth_type == AuthType.CUSTOM_HEADER.value:
        return {"X-API-Key": api_key}
    return {}


class ScraperInvoker(Protocol):
    """Runs a scraper and returns its decoded JSON payload."""

    async def invoke(self, path: str, timeout: float) -> Any: ...


class SubprocessScraperInvoker:
    """Runs scraper executables as child processes.

    The executable gets no arguments, inherits the environment and runs in
    ``workdir`` (default: the current directory). Its stdout is either the
    JSON payload itself or, on the last non-empty line, a path to a JSON file.
    """

    def __init__(self, workdir: str | Path | None = None):
        self.workdir = Path(workdir) if workdir else None

    async def invoke(self, path: str, timeout: float) -> Any:
        cwd = self.workdir or Path(os.getcwd())
        logger.debug(f"Spawning scraper {path} in {cwd} (timeout={timeout}s)")

        try:
            proc = await asyncio.create_subprocess_exec(
                path,
                cwd=str(cwd),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise FetchError("scraper", f"cannot start {path}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout)
        except asyncio.TimeoutError:
            await _reap(proc)
            raise FetchError("timeout", f"scraper {path} exceeded {timeout}s") from None
        except asyncio.CancelledError:
            await _reap(proc)
            raise

        if proc.returncode != 0:
            message = stderr[:MAX_STDERR_BYTES].decode("utf-8", errors="replace").strip()
            raise FetchError("scraper", f"{path} exited with {proc.returncode}: {message}")

        return _parse_scraper_output(stdout, cwd)


async def _reap(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    await proc.wait()


def _parse_scraper_output(stdout: bytes, cwd: Path) -> Any:
    try:
        text = stdout.decode("utf-8")
    except UnicodeDecodeError as e:
        raise FetchError("parse", f"scraper output is not UTF-8: {e}") from e

    try:
        return json.loads(text)
    except ValueError:
        pass

    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if not lines:
        raise FetchError("parse", "scraper produced no output")

    candidate = Path(lines[-1])
    if not candidate.is_absolute():
        candidate = cwd / candidate
    if not candidate.is_file():
        raise FetchError("parse", "scraper stdout is neither JSON nor a path to a JSON file")

    try:
        return json.loads(candidate.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise FetchError("parse", f"cannot read {candidate}: {e}") from e


class Fetcher:
    """Fetch raw payloads for API and SCRAPER integrations.

    Args:
        invoker: Scraper capability (default: ``SubprocessScraperInvoker``)
        http_transport: Optional httpx transport (tests pass ``httpx.MockTransport``)
        workdir: Working directory for the default scraper invoker
    """

    def __init__(
        self,
        invoker: ScraperInvoker | None = None,
        *,
        http_transport: httpx.AsyncBaseTransport | None = None,
        workdir: str | Path | None = None,
    ):
        self.invoker = invoker or SubprocessScraperInvoker(workdir)
        self.http_transport = http_transport

    async def fetch(self, integration, timeout: float) -> FetchResult:
        if integration is None:
            raise MissingCredentials("vendor has no integration")

        if integration.type == IntegrationType.API.value:
            if not integration.api_base_url:
                raise MissingCredentials("API integration has no apiBaseUrl")
            raw = await self._fetch_http(integration, timeout)
            return FetchResult(raw=raw, source="http")

        if not integration.scraper_path:
            raise MissingCredentials("SCRAPER integration has no scraperPath")
        raw = await self.invoker.invoke(integration.scraper_path, timeout)
        return FetchResult(raw=raw, source="file")

    async def _fetch_http(self, integration, timeout: float) -> Any:
        url = integration.api_base_url
        headers = {"Accept": "application/json"}
        headers.update(auth_headers(integration.api_auth_type, integration.api_key))

        async with httpx.AsyncClient(
            timeout=timeout, transport=self.http_transport, follow_redirects=True
        ) as client:
            try:
                response = await asyncio.wait_for(client.get(url, headers=headers), timeout)
            except (httpx.TimeoutException, asyncio.TimeoutError):
                raise FetchError("timeout", f"GET {url} exceeded {timeout}s") from None
            except httpx.HTTPError as e:
                raise FetchError("http", f"GET {url} failed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise FetchError(
                "http",
                f"GET {url} returned HTTP {response.status_code}",
                status=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise FetchError("parse", f"GET {url} returned a non-JSON body") from e


__all__ = [
    "FetchResult",
    "Fetcher",
    "MAX_STDERR_BYTES",
    "ScraperInvoker",
    "SubprocessScraperInvoker",
    "auth_headers",
]
