"""Ephemeral credential issuance.

Tokens minted here are short-lived: callers request a new one immediately
before every remote operation and never hold on to it afterwards.
"""

import base64
import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime

import httpx
import jwt

from .config import AuthConfig
from .constants import (
    APP_NAME,
    JWT_BACKDATE_SECONDS,
    JWT_LIFETIME_SECONDS,
    TOKEN_USERNAME,
)
from .context import Context
from .errors import AuthError

logger = logging.getLogger(APP_NAME)

API_TIMEOUT = 30.0


@dataclass(frozen=True)
class BasicAuth:
    """HTTP basic credentials handed to git.

    Attributes:
        username (str): The basic-auth username.
        password (str): The secret (here, a bearer token).
    """

    username: str
    password: str = field(repr=False)

    @classmethod
    def for_token(cls, token: str) -> "BasicAuth":
        """Credentials for an app-style token, using the reserved username."""
        return cls(username=TOKEN_USERNAME, password=token)

    def git_env(self) -> dict[str, str]:
        """Environment variables that make git send these credentials.

        The header is injected through GIT_CONFIG_* so the secret never shows up
        on the command line, in the remote URL or in `.git/config`. Entries
        already defined in the process environment are kept; the header is
        appended after them.
        """
        try:
            index = int(os.environ.get("GIT_CONFIG_COUNT") or 0)
        except ValueError:
            logger.warning(
                f"Ignoring invalid GIT_CONFIG_COUNT={os.environ['GIT_CONFIG_COUNT']!r}"
            )
            index = 0

        raw = f"{self.username}:{self.password}".encode()
        encoded = base64.b64encode(raw).decode("ascii")
        return {
            "GIT_CONFIG_COUNT": str(index + 1),
            f"GIT_CONFIG_KEY_{index}": "http.extraHeader",
            f"GIT_CONFIG_VALUE_{index}": f"Authorization: Basic {encoded}",
        }


@dataclass(frozen=True)
class InstallationToken:
    """A freshly minted bearer token.

    Attributes:
        token (str): The bearer token.
        expires_at (datetime | None): Expiry reported by the API, if any.
        api_url (str): The REST API root the token is valid for.
    """

    token: str = field(repr=False)
    expires_at: datetime | None = None
    api_url: str = ""

    def client(self, timeout: float = API_TIMEOUT) -> httpx.Client:
        """Builds an API client authenticated with this token.

        The caller owns the returned client and is responsible for closing it.
        """
        return httpx.Client(
            base_url=self.api_url,
            headers={
                "Authorization": f"Bearer {self.token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            timeout=timeout,
        )


class TokenProvider(ABC):
    """Base class for token issuers.

    Implementations must be cheap to call repeatedly and must not cache tokens
    between calls.
    """

    @abstractmethod
    def issue(self, config: AuthConfig, ctx: Context | None = None) -> InstallationToken:
        """Issues a new token.

        Args:
            config (AuthConfig): The credentials to exchange.
            ctx (Context | None, optional): Cancellation and deadline signal.

        Returns:
            InstallationToken: The issued token.

        Raises:
            AuthError: If no token could be issued.
        """


class StaticTokenProvider(TokenProvider):
    """Returns the static token configured in `AuthConfig.token`.

    Used with personal access tokens, which the caller rotates out of band.
    """

    def issue(self, config: AuthConfig, ctx: Context | None = None) -> InstallationToken:
        if ctx:
            ctx.check("auth")
        if not config.token:
            raise AuthError("No static token configured")
        return InstallationToken(token=config.token, api_url=config.api_url)


class GitHubAppTokenProvider(TokenProvider):
    """Exchanges app credentials for an installation access token.

    A short-lived RS256 JWT identifying the app is signed with its private key
    and traded for a token scoped to one installation.
    """

    def __init__(
        self,
        timeout: float = API_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initializes the provider.

        Args:
            timeout (float, optional): HTTP timeout in seconds. Defaults to 30.
            transport (httpx.BaseTransport | None, optional): Custom transport,
                                                              mainly for tests.
        """
        self.timeout = timeout
        self.transport = transport

    def _app_jwt(self, config: AuthConfig) -> str:
        now = int(time.time())
        payload = {
            "iat": now - JWT_BACKDATE_SECONDS,
            "exp": now + JWT_LIFETIME_SECONDS,
            "iss": config.app_id,
        }
        return jwt.encode(payload, config.private_key, algorithm="RS256")

    def issue(self, config: AuthConfig, ctx: Context | None = None) -> InstallationToken:
        if not config.app_id or not config.installation_id:
            raise AuthError("App id and installation id are required")
        if not config.private_key:
            raise AuthError("No private key configured", app_id=config.app_id)

        timeout = self.timeout
        if ctx:
            ctx.check("auth")
            remaining = ctx.remaining()
            if remaining is not None:
                timeout = min(timeout, remaining)

        try:
            app_token = self._app_jwt(config)
        except (ValueError, TypeError, jwt.PyJWTError) as e:
            raise AuthError(
                f"Failed to sign app JWT: {e}", app_id=config.app_id
            ) from e

        url = (
            f"{config.api_url.rstrip('/')}/app/installations/"
            f"{config.installation_id}/access_tokens"
        )
        headers = {
            "Authorization": f"Bearer {app_token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": APP_NAME,
        }

        try:
            with httpx.Client(timeout=timeout, transport=self.transport) as client:
                response = client.post(url, headers=headers)
        except httpx.HTTPError as e:
            raise AuthError(
                f"Token request failed: {e}",
                installation_id=config.installation_id,
            ) from e

        if response.status_code != 201:
            raise AuthError(
                f"Token request returned {response.status_code}: {response.text[:200]}",
                installation_id=config.installation_id,
            )

        try:
            body = response.json()
            token = body["token"]
        except (ValueError, KeyError, TypeError) as e:
            raise AuthError(
                "Malformed token response", installation_id=config.installation_id
            ) from e

        expires_at = None
        if raw_expiry := body.get("expires_at"):
            try:
                expires_at = datetime.fromisoformat(raw_expiry.replace("Z", "+00:00"))
            except ValueError:
                logger.debug(f"Unparseable token expiry: {raw_expiry}")

        logger.debug(
            f"TOKEN issued for installation {config.installation_id} "
            f"(expires {expires_at})"
        )
        return InstallationToken(
            token=token, expires_at=expires_at, api_url=config.api_url
        )


def provider_for(config: AuthConfig) -> TokenProvider:
    """Picks a token provider matching the available credentials."""
    if config.token and not config.private_key:
        return StaticTokenProvider()
    return GitHubAppTokenProvider()
