"""
Fetch collaborators.

The reconstructor and the data browser only see the FetchCollaborator
protocol. OfflineFetcher answers from nothing (store-only operation);
AppViewFetcher pulls public data over XRPC and writes it through
ThreadCapture.
"""

import asyncio
from typing import Any, Dict, Optional, Protocol, runtime_checkable

import httpx

from skyvault.config import Settings, get_settings
from skyvault.engines.threads.capture import ThreadCapture
from skyvault.logging_config import get_logger
from skyvault.schemas.request_params import RequestParams

logger = get_logger(__name__)

MAX_RETRIES = 3
RETRY_BACKOFF = (1.0, 2.0, 4.0)  # seconds


@runtime_checkable
class FetchCollaborator(Protocol):
    """Data-source verbs. Implementations store what they fetch."""

    async def fetch_thread(self, focus_id: str, params: RequestParams) -> None:
        ...

    async def fetch_profile(self, did: str, params: RequestParams) -> Optional[Dict[str, Any]]:
        ...

    async def fetch_post(self, uri: str, params: RequestParams) -> Optional[Dict[str, Any]]:
        ...

    async def fetch_repo_description(self, did: str, params: RequestParams) -> Optional[Dict[str, Any]]:
        ...


class OfflineFetcher:
    """Never fetches; everything must already be in the store."""

    async def fetch_thread(self, focus_id: str, params: RequestParams) -> None:
        logger.debug("Offline: not fetching thread %s", focus_id)

    async def fetch_profile(self, did: str, params: RequestParams) -> Optional[Dict[str, Any]]:
        return None

    async def fetch_post(self, uri: str, params: RequestParams) -> Optional[Dict[str, Any]]:
        return None

    async def fetch_repo_description(self, did: str, params: RequestParams) -> Optional[Dict[str, Any]]:
        return None


async def _request_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    **kwargs: Any,
) -> httpx.Response:
    """Perform request with exponential backoff for 5xx and timeouts. On 429, honor Retry-After."""
    for attempt in range(MAX_RETRIES - 1):
        try:
            response = await client.request(method, url, **kwargs)
        except (httpx.TimeoutException, httpx.ConnectError) as e:
            logger.debug("Retrying %s %s after %s", method, url, e)
            await asyncio.sleep(RETRY_BACKOFF[attempt])
            continue
        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            await asyncio.sleep(
                int(retry_after) if retry_after and retry_after.isdigit() else RETRY_BACKOFF[attempt]
            )
            continue
        if response.status_code >= 500:
            await asyncio.sleep(RETRY_BACKOFF[attempt])
            continue
        return response
    # Final attempt: whatever comes back (or is raised) goes to the caller
    return await client.request(method, url, **kwargs)


class AppViewFetcher:
    """
    Public XRPC client (app.bsky.* / com.atproto.*) that stores results.

    Network failures are logged and reported as "nothing fetched"; the
    callers already degrade on missing data.
    """

    def __init__(
        self,
        capture: ThreadCapture,
        base_url: str = "https://public.api.bsky.app",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.capture = capture
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    async def _get(self, method: str, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        url = f"{self.base_url}/xrpc/{method}"
        try:
            if self._client is not None:
                response = await _request_with_retry(self._client, "GET", url, params=params, timeout=self.timeout)
            else:
                async with httpx.AsyncClient() as client:
                    response = await _request_with_retry(client, "GET", url, params=params, timeout=self.timeout)
        except (httpx.TimeoutException, httpx.ConnectError) as e:
            logger.warning("XRPC %s failed: %s", method, e)
            return None
        if response.status_code != 200:
            logger.warning(
                "XRPC %s returned %s", method, response.status_code,
                extra={"xrpc_params": params},
            )
            return None
        try:
            return response.json()
        except ValueError as e:
            logger.warning("XRPC %s returned invalid JSON: %s", method, e)
            return None

    async def fetch_thread(self, focus_id: str, params: RequestParams) -> None:
        data = await self._get(
            "app.bsky.feed.getPostThread",
            {"uri": focus_id, "depth": 1000, "parentHeight": 1000},
        )
        if data and isinstance(data.get("thread"), dict):
            await self.capture.store_thread(data["thread"], params)

    async def fetch_profile(self, did: str, params: RequestParams) -> Optional[Dict[str, Any]]:
        profile = await self._get("app.bsky.actor.getProfile", {"actor": did})
        if profile and profile.get("did"):
            await self.capture.store_profile(profile, params)
            return profile
        return None

    async def fetch_post(self, uri: str, params: RequestParams) -> Optional[Dict[str, Any]]:
        data = await self._get("app.bsky.feed.getPosts", {"uris": uri})
        posts = (data or {}).get("posts") or []
        if not posts:
            return None
        post = posts[0]
        await self.capture.store_thread({"post": post}, params)
        return post

    async def fetch_repo_description(self, did: str, params: RequestParams) -> Optional[Dict[str, Any]]:
        description = await self._get("com.atproto.repo.describeRepo", {"repo": did})
        if description and description.get("did"):
            await self.capture.store_repo_description(description, params)
            return description
        return None


def create_fetcher(capture: ThreadCapture, settings: Optional[Settings] = None) -> FetchCollaborator:
    """Build the fetch collaborator named by `fetcher`."""
    settings = settings or get_settings()
    kind = settings.fetcher.lower()
    if kind == "offline":
        return OfflineFetcher()
    if kind == "appview":
        return AppViewFetcher(capture, settings.appview_url, settings.fetch_timeout)
    raise ValueError(f"Unknown fetcher: {settings.fetcher}")
