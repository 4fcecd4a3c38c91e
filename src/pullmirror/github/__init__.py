"""GitHub API access: credentials, quota tracking and conditional requests."""

from pullmirror.github.auth import (
    AuthenticationError,
    CredentialProvider,
    EnvironmentCredentialProvider,
    StaticCredentialProvider,
    validate_token,
)
from pullmirror.github.client import (
    ConditionalRequestClient,
    ConditionalResult,
    GitHubAPIError,
    RateLimitError,
    is_permission_error,
)
from pullmirror.github.ratelimit import (
    BudgetType,
    RateLimitState,
    RateLimitTracker,
)

__all__ = [
    "AuthenticationError",
    "BudgetType",
    "ConditionalRequestClient",
    "ConditionalResult",
    "CredentialProvider",
    "EnvironmentCredentialProvider",
    "GitHubAPIError",
    "RateLimitError",
    "RateLimitState",
    "RateLimitTracker",
    "StaticCredentialProvider",
    "is_permission_error",
    "validate_token",
]
