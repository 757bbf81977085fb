from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Optional

import aiohttp

from rxresolve.core.config import Settings, get_settings

# ---------------------------------------------------------------------------
# RxNav HTTP session  (public API, no auth; JSON only)
# ---------------------------------------------------------------------------
DEFAULT_HEADERS: dict[str, str] = {
    "Accept": "application/json",
    "User-Agent": "rxresolve/0.1 (+https://rxnav.nlm.nih.gov)",
}


def create_http_session(settings: Optional[Settings] = None) -> aiohttp.ClientSession:
    """Build a ClientSession with the configured total timeout."""
    settings = settings or get_settings()
    timeout = aiohttp.ClientTimeout(total=settings.rxnav_timeout_seconds)
    return aiohttp.ClientSession(headers=DEFAULT_HEADERS, timeout=timeout)


@asynccontextmanager
async def get_http_session(settings: Optional[Settings] = None) -> AsyncGenerator[aiohttp.ClientSession, None]:
    async with create_http_session(settings) as session:
        yield session
