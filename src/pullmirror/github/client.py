"""Conditional GitHub API client with quota-aware retries.

This module provides the ConditionalRequestClient which handles:
- ETag / Last-Modified conditional requests (304 responses cost no quota)
- Proactive pausing when a budget runs low (see RateLimitTracker)
- Quota extraction from every response
- Waiting out quota errors (429, 403 rate limit, GraphQL rate limit) and retrying,
  up to a configurable number of attempts
- Link-header pagination where only the first page is conditional
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx

from pullmirror.github.auth import mask_token, require_token
from pullmirror.github.ratelimit import RESET_BUFFER_SECONDS, BudgetType

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from pullmirror.config.schema import GitHubConfig
    from pullmirror.github.auth import CredentialProvider
    from pullmirror.github.ratelimit import RateLimitTracker

logger = logging.getLogger(__name__)

# Wait used for a quota error that carries neither Retry-After nor a reset header
DEFAULT_QUOTA_WAIT_SECONDS = 60

DEFAULT_MAX_QUOTA_RETRIES = 10

PERMISSION_ERROR_MARKER = "Resource not accessible"

_PLACEHOLDER = re.compile(r"\{(\w+)\}")


class RateLimitError(Exception):
    """Raised when a quota error persists past the retry limit."""

    def __init__(
        self,
        message: str,
        *,
        budget: BudgetType,
        attempts: int,
        status_code: int | None = None,
    ) -> None:
        """Initialize rate limit error.

        Args:
            message: Error description.
            budget: Budget the failing request was charged to.
            attempts: Number of requests made before giving up.
            status_code: HTTP status of the last response.
        """
        super().__init__(message)
        self.budget = budget
        self.attempts = attempts
        self.status_code = status_code


class GitHubAPIError(Exception):
    """Raised for GitHub API errors."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        response_body: dict[str, Any] | None = None,
    ) -> None:
        """Initialize GitHub API error.

        Args:
            message: Error description.
            status_code: HTTP status code.
            response_body: Response JSON body if available.
        """
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body or {}


def is_permission_error(exc: BaseException) -> bool:
    """Whether an error means the token may not read this resource.

    GitHub answers "Resource not accessible by integration" (or "by
    personal access token") when a token lacks a permission such as checks.
    """
    return PERMISSION_ERROR_MARKER in str(exc)


def is_quota_error(status_code: int, message: str) -> bool:
    """Classify a response as a quota (rate limit) error."""
    if status_code == 429:
        return True
    if status_code == 403 and "rate limit" in message.lower():
        return True
    return "API rate limit exceeded" in message


def expand_route(
    route: str,
    params: Mapping[str, Any] | None = None,
) -> tuple[str, str, dict[str, Any]]:
    """Fill a route template such as "GET /repos/{owner}/{repo}/pulls".

    Args:
        route: Method and path template. The method defaults to GET.
        params: Values for the placeholders. Leftovers become query parameters.

    Returns:
        Tuple of (method, path, query parameters).

    Raises:
        ValueError: If a placeholder has no value.
    """
    method, _, template = route.strip().partition(" ")
    if not template:
        method, template = "GET", method
    remaining = dict(params or {})

    def fill(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in remaining:
            msg = f"Missing route parameter '{name}' for {route}"
            raise ValueError(msg)
        return quote(str(remaining.pop(name)), safe="")

    path = _PLACEHOLDER.sub(fill, template.strip())
    return method.upper(), path, remaining


def parse_next_link(link_header: str | None) -> str | None:
    """Parse the 'next' URL from a Link header.

    Args:
        link_header: Link header value.

    Returns:
        Next page URL or None.
    """
    if not link_header:
        return None

    # Link header format: <url>; rel="next", <url>; rel="last"
    for part in link_header.split(","):
        match = re.match(r'<([^>]+)>;\s*rel="next"', part.strip())
        if match:
            return match.group(1)

    return None


def _json_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return {"message": response.text}


def _error_message(body: Any) -> str:
    if not isinstance(body, dict):
        return ""
    message = body.get("message")
    if isinstance(message, str):
        return message
    errors = body.get("errors")
    if isinstance(errors, list):
        return "; ".join(
            str(error.get("message", "")) for error in errors if isinstance(error, dict)
        )
    return ""


@dataclass
class ConditionalResult:
    """Outcome of a conditional request.

    Attributes:
        data: Parsed JSON body, or None when not modified
        not_modified: True for a 304 response
        validator: ETag to send next time (echoes the input on 304)
        last_modified: Last-Modified to send next time (echoes the input on 304)
        headers: Response headers of the first page
    """

    data: Any
    not_modified: bool
    validator: str | None = None
    last_modified: str | None = None
    headers: Mapping[str, str] = field(default_factory=dict)


class ConditionalRequestClient:
    """Async GitHub API client built around conditional requests.

    One client serves the whole process. The token is read from the
    credential provider for every request, so signing in or out takes
    effect without rebuilding the client.

    The client supports both context manager and standalone usage.
    """

    def __init__(
        self,
        credentials: CredentialProvider,
        tracker: RateLimitTracker,
        *,
        base_url: str = "https://api.github.com",
        user_agent: str = "pullmirror/0.1.0",
        timeout_seconds: float = 30.0,
        max_quota_retries: int | None = DEFAULT_MAX_QUOTA_RETRIES,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the client.

        Args:
            credentials: Source of the bearer token.
            tracker: Shared quota tracker, updated from every response.
            base_url: REST API root.
            user_agent: User-Agent header value.
            timeout_seconds: Per-request timeout.
            max_quota_retries: Retries after quota errors before raising
                RateLimitError. None retries until the quota recovers.
            http_client: Optional httpx client (tests pass one with a MockTransport).
            sleep: Awaitable sleep, replaceable in tests.
            clock: Returns the current time in unix seconds.
        """
        self._credentials = credentials
        self._tracker = tracker
        self._base_url = base_url.rstrip("/")
        self._user_agent = user_agent
        self._timeout = timeout_seconds
        self._max_quota_retries = max_quota_retries
        self._client = http_client
        self._owns_client = http_client is None
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_config(
        cls,
        config: GitHubConfig,
        credentials: CredentialProvider,
        tracker: RateLimitTracker,
        **kwargs: Any,
    ) -> ConditionalRequestClient:
        """Build a client from the github section of the config."""
        return cls(
            credentials,
            tracker,
            base_url=config.base_url,
            user_agent=config.user_agent,
            timeout_seconds=config.timeout_seconds,
            max_quota_retries=config.max_quota_retries,
            **kwargs,
        )

    @property
    def tracker(self) -> RateLimitTracker:
        """The quota tracker this client updates."""
        return self._tracker

    @property
    def graphql_url(self) -> str:
        """GraphQL endpoint (GitHub Enterprise serves it beside /api/v3)."""
        if self._base_url.endswith("/api/v3"):
            return self._base_url[: -len("v3")] + "graphql"
        return f"{self._base_url}/graphql"

    async def __aenter__(self) -> ConditionalRequestClient:
        """Enter async context."""
        self._ensure_client()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Exit async context."""
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True
        return self._client

    def _headers(self) -> dict[str, str]:
        token = require_token(self._credentials)
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": self._user_agent,
        }

    def _url(self, path: str) -> str:
        if path.startswith(("https://", "http://")):
            return path
        return f"{self._base_url}/{path.lstrip('/')}"

    async def _pause_if_needed(self, budget: BudgetType) -> None:
        if not self._tracker.should_pause(budget):
            return
        wait_ms = self._tracker.wait_duration_ms(budget)
        logger.warning(
            "%s quota low (%s remaining), pausing for %.1f seconds",
            budget.value,
            self._tracker.remaining_quota(budget),
            wait_ms / 1000,
        )
        await self._sleep(wait_ms / 1000)

    def _quota_wait_seconds(self, headers: Mapping[str, str]) -> float:
        retry_after = headers.get("retry-after")
        if retry_after is not None:
            try:
                return max(0.0, float(retry_after))
            except ValueError:
                pass
        reset = headers.get("x-ratelimit-reset")
        if reset is not None:
            try:
                return max(0.0, float(reset) - self._clock()) + RESET_BUFFER_SECONDS
            except ValueError:
                pass
        return DEFAULT_QUOTA_WAIT_SECONDS

    async def _send(
        self,
        method: str,
        url: str,
        *,
        budget: BudgetType,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
        extra_headers: Mapping[str, str] | None = None,
    ) -> tuple[httpx.Response, Any]:
        """Send a request, waiting out quota errors.

        Returns:
            Tuple of (response, parsed body). The response is never a quota error.

        Raises:
            RateLimitError: If quota errors outlast max_quota_retries.
            AuthenticationError: If no token is available.
            httpx.RequestError: On transport failures.
        """
        client = self._ensure_client()
        retries = 0

        while True:
            await self._pause_if_needed(budget)

            headers = self._headers()
            if extra_headers:
                headers.update(extra_headers)

            response = await client.request(
                method, url, params=params or None, json=json, headers=headers
            )
            self._tracker.update_from_headers(budget, response.headers)
            body = _json_body(response) if response.status_code != 304 else None
            message = _error_message(body)

            if not is_quota_error(response.status_code, message):
                return response, body

            if self._max_quota_retries is not None and retries >= self._max_quota_retries:
                msg = (
                    f"GitHub API rate limit still exceeded after {retries} retries: "
                    f"{message or response.status_code}"
                )
                raise RateLimitError(
                    msg,
                    budget=budget,
                    attempts=retries + 1,
                    status_code=response.status_code,
                )

            retries += 1
            wait_seconds = self._quota_wait_seconds(response.headers)
            logger.warning(
                "Rate limit exceeded on %s %s (retry %d), waiting %.0f seconds",
                method,
                url,
                retries,
                wait_seconds,
            )
            await self._sleep(wait_seconds)

    @staticmethod
    def _raise_for_status(response: httpx.Response, body: Any) -> None:
        if response.is_success:
            return
        message = _error_message(body) or "Unknown error"
        raise GitHubAPIError(
            f"GitHub API error: {response.status_code} - {message}",
            status_code=response.status_code,
            response_body=body if isinstance(body, dict) else {"message": message},
        )

    async def request(
        self,
        route: str,
        params: Mapping[str, Any] | None = None,
        *,
        validator: str | None = None,
        last_modified: str | None = None,
        budget: BudgetType = BudgetType.RESOURCE,
    ) -> ConditionalResult:
        """Make a conditional request.

        Args:
            route: Route template, e.g. "GET /repos/{owner}/{repo}/pulls/{pull_number}".
            params: Placeholder values and query parameters.
            validator: ETag from the previous response, sent as If-None-Match.
            last_modified: Last-Modified from the previous response,
                sent as If-Modified-Since.
            budget: Quota budget the call is charged to.

        Returns:
            ConditionalResult. On 304 data is None and the input validators are echoed.

        Raises:
            GitHubAPIError: For non-2xx, non-304 responses.
            RateLimitError: If quota errors outlast the retry limit.
        """
        method, path, query = expand_route(route, params)
        conditional: dict[str, str] = {}
        if validator:
            conditional["If-None-Match"] = validator
        if last_modified:
            conditional["If-Modified-Since"] = last_modified

        response, body = await self._send(
            method,
            self._url(path),
            budget=budget,
            params=query,
            extra_headers=conditional,
        )

        if response.status_code == 304:
            logger.debug("Not modified: %s %s", method, path)
            return ConditionalResult(
                data=None,
                not_modified=True,
                validator=validator,
                last_modified=last_modified,
                headers=response.headers,
            )

        self._raise_for_status(response, body)
        return ConditionalResult(
            data=body,
            not_modified=False,
            validator=response.headers.get("etag"),
            last_modified=response.headers.get("last-modified"),
            headers=response.headers,
        )

    async def paginate(
        self,
        route: str,
        params: Mapping[str, Any] | None = None,
        *,
        items_key: str | None = None,
        validator: str | None = None,
        last_modified: str | None = None,
        budget: BudgetType = BudgetType.RESOURCE,
    ) -> ConditionalResult:
        """Fetch every page of a list endpoint.

        Only the first page is conditional. When it is not modified no
        further pages are requested. Later pages are plain GETs of the
        Link rel="next" URLs.

        Args:
            route: Route template of the list endpoint.
            params: Placeholder values and query parameters (per_page defaults to 100).
            items_key: Key holding the list when pages are objects
                (e.g. "check_runs").
            validator: ETag of the previous first page.
            last_modified: Last-Modified of the previous first page.
            budget: Quota budget the calls are charged to.

        Returns:
            ConditionalResult whose data is the concatenated item list.
        """
        query = dict(params or {})
        query.setdefault("per_page", 100)

        first = await self.request(
            route,
            query,
            validator=validator,
            last_modified=last_modified,
            budget=budget,
        )
        if first.not_modified:
            return first

        items = self._page_items(first.data, items_key)
        next_url = parse_next_link(first.headers.get("link"))
        page_count = 1

        while next_url:
            response, body = await self._send("GET", next_url, budget=budget)
            self._raise_for_status(response, body)
            items.extend(self._page_items(body, items_key))
            page_count += 1
            next_url = parse_next_link(response.headers.get("link"))

        if page_count > 1:
            logger.debug("Fetched %d pages (%d items) for %s", page_count, len(items), route)

        return ConditionalResult(
            data=items,
            not_modified=False,
            validator=first.validator,
            last_modified=first.last_modified,
            headers=first.headers,
        )

    @staticmethod
    def _page_items(data: Any, items_key: str | None) -> list[Any]:
        if items_key is not None:
            data = data.get(items_key) if isinstance(data, dict) else None
        if isinstance(data, list):
            return list(data)
        return []

    async def graphql(
        self,
        query: str,
        variables: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Run a GraphQL query on the bulk budget.

        The tracker is updated from the response's ``rateLimit`` object when
        the query selects it.

        Returns:
            The ``data`` member of the response.

        Raises:
            GitHubAPIError: For HTTP errors and non-quota GraphQL errors.
            RateLimitError: If quota errors outlast the retry limit.
        """
        response, body = await self._send(
            "POST",
            self.graphql_url,
            budget=BudgetType.BULK,
            json={"query": query, "variables": dict(variables or {})},
        )
        self._raise_for_status(response, body)

        if not isinstance(body, dict):
            raise GitHubAPIError(
                "GitHub GraphQL returned a non-object response",
                status_code=response.status_code,
            )

        data = body.get("data") or {}
        self._tracker.update_from_graphql(data.get("rateLimit"))

        if body.get("errors"):
            raise GitHubAPIError(
                f"GitHub GraphQL error: {_error_message(body)}",
                status_code=response.status_code,
                response_body=body,
            )

        return data

    def __repr__(self) -> str:
        """Get string representation."""
        return (
            f"ConditionalRequestClient(base_url={self._base_url!r}, "
            f"token={mask_token(self._credentials.get_token())!r})"
        )
