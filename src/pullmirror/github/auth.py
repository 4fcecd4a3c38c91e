"""GitHub credentials and token validation."""

from __future__ import annotations

import os
from typing import Protocol

import httpx

TOKEN_ENV_VAR = "GITHUB_TOKEN"


class AuthenticationError(Exception):
    """Raised when GitHub authentication fails."""

    def __init__(
        self,
        message: str,
        *,
        missing_scopes: list[str] | None = None,
        status_code: int | None = None,
    ) -> None:
        """Initialize authentication error.

        Args:
            message: Error description.
            missing_scopes: List of required but missing OAuth scopes.
            status_code: HTTP status code if from API response.
        """
        super().__init__(message)
        self.missing_scopes = missing_scopes or []
        self.status_code = status_code


class CredentialProvider(Protocol):
    """Source of the GitHub token used for each request."""

    def get_token(self) -> str | None:
        """Return the current token, or None when signed out."""
        ...


class EnvironmentCredentialProvider:
    """Reads the token from an environment variable on every call."""

    def __init__(self, env_var: str = TOKEN_ENV_VAR) -> None:
        self._env_var = env_var

    def get_token(self) -> str | None:
        token = os.environ.get(self._env_var, "").strip()
        return token or None


class StaticCredentialProvider:
    """Returns a fixed token. Pass None to model a signed-out user."""

    def __init__(self, token: str | None) -> None:
        self._token = token

    def get_token(self) -> str | None:
        return self._token


def require_token(credentials: CredentialProvider) -> str:
    """Get a token from a provider or fail.

    Raises:
        AuthenticationError: If the provider has no token.
    """
    token = credentials.get_token()
    if not token:
        raise AuthenticationError(
            f"No GitHub token available. Set {TOKEN_ENV_VAR} to a personal "
            "access token with 'repo' scope."
        )
    return token


REQUIRED_SCOPE = "repo"

# Status codes /user answers with for unusable tokens
_REJECTIONS = {
    401: "GitHub token is invalid or expired.",
    403: "GitHub token access denied. Check token permissions.",
}


def _granted_scopes(response: httpx.Response) -> list[str] | None:
    """Scopes of a classic token. None for fine-grained tokens (no header)."""
    header = response.headers.get("X-OAuth-Scopes")
    if header is None:
        return None
    return [scope.strip() for scope in header.split(",") if scope.strip()]


async def validate_token(
    token: str,
    *,
    base_url: str = "https://api.github.com",
    client: httpx.AsyncClient | None = None,
) -> dict[str, str | list[str]]:
    """Check a token against ``GET /user``.

    Classic tokens must carry the 'repo' scope to read private pull
    requests. Fine-grained tokens send no scopes header and are accepted.

    Args:
        token: GitHub personal access token.
        base_url: GitHub API base URL.
        client: Optional httpx client for testing.

    Returns:
        ``{"user": login, "scopes": [...]}``

    Raises:
        AuthenticationError: If the token is rejected or lacks the repo scope.
    """
    owned = client is None
    http = client or httpx.AsyncClient()
    try:
        response = await http.get(
            f"{base_url.rstrip('/')}/user",
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "User-Agent": "pullmirror/0.1.0",
            },
        )
    except httpx.RequestError as e:
        msg = f"Failed to connect to GitHub API: {e}"
        raise AuthenticationError(msg) from e
    finally:
        if owned:
            await http.aclose()

    status = response.status_code
    if status != 200:
        raise AuthenticationError(
            _REJECTIONS.get(status, f"Unexpected response from GitHub API: {status}"),
            status_code=status,
        )

    scopes = _granted_scopes(response)
    if scopes is not None and REQUIRED_SCOPE not in scopes:
        raise AuthenticationError(
            "GitHub token is missing the 'repo' scope needed to read pull requests.",
            missing_scopes=[REQUIRED_SCOPE],
        )

    return {"user": response.json().get("login", "unknown"), "scopes": scopes or []}


def mask_token(token: str | None) -> str:
    """Mask a token for safe logging.

    Returns:
        Masked token showing first 4 and last 4 characters.
    """
    if not token or len(token) <= 8:
        return "***"
    return f"{token[:4]}...{token[-4:]}"
