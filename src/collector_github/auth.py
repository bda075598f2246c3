"""Credentials for the GitHub REST API: token, GitHub App, or none."""

import logging
import os
import time
from datetime import datetime
from typing import Optional

import httpx
import jwt
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from jwt.algorithms import RSAAlgorithm

from .config import ExporterConfig
from .errors import AuthError, TransientAPIError


logger = logging.getLogger(__name__)

# Installation tokens live one hour; refresh a minute early.
TOKEN_REFRESH_MARGIN_SECONDS = 60
JWT_LIFETIME_SECONDS = 540


class NoAuth:
    async def authorization(self, client: httpx.AsyncClient) -> Optional[str]:
        return None


class TokenAuth:
    def __init__(self, token: str):
        self.token = token

    async def authorization(self, client: httpx.AsyncClient) -> Optional[str]:
        return f"Bearer {self.token}"


class GitHubAppAuth:
    """Installation access tokens minted from an app JWT."""

    def __init__(
        self,
        app_id: int,
        installation_id: int,
        private_key: str,
        api_base_url: str,
        clock=time.time,
    ):
        self.app_id = app_id
        self.installation_id = installation_id
        self.private_key = self._load_key(private_key)
        self.signing_key = self._parse_key(self.private_key)
        self.api_base_url = api_base_url.rstrip("/")
        self.clock = clock

        self._token: Optional[str] = None
        self._expires_at = 0.0

    @staticmethod
    def _load_key(private_key: str) -> str:
        if private_key.lstrip().startswith("-----BEGIN"):
            return private_key
        if not os.path.isfile(private_key):
            raise AuthError(f"GitHub App private key file not found: {private_key}")
        try:
            with open(private_key, "r", encoding="utf-8") as fh:
                return fh.read()
        except (OSError, UnicodeDecodeError) as e:
            raise AuthError(f"Cannot read GitHub App private key {private_key}: {e}") from e

    @staticmethod
    def _parse_key(pem: str):
        try:
            key = RSAAlgorithm(RSAAlgorithm.SHA256).prepare_key(pem)
        except (ValueError, TypeError, jwt.PyJWTError) as e:
            raise AuthError(f"GitHub App private key is not a usable RSA key: {e}") from e
        if not isinstance(key, RSAPrivateKey):
            raise AuthError("GitHub App private key is a public key")
        return key

    def app_jwt(self) -> str:
        now = int(self.clock())
        payload = {
            "iat": now - 60,
            "exp": now + JWT_LIFETIME_SECONDS,
            "iss": str(self.app_id),
        }
        try:
            return jwt.encode(payload, self.signing_key, algorithm="RS256")
        except (ValueError, jwt.PyJWTError) as e:
            raise AuthError(f"Failed to sign GitHub App JWT: {e}") from e

    async def authorization(self, client: httpx.AsyncClient) -> Optional[str]:
        # No lock: concurrent callers may each exchange, the last token wins.
        if self._token is None or self.clock() >= self._expires_at:
            await self._refresh(client)
        return f"Bearer {self._token}"

    async def _refresh(self, client: httpx.AsyncClient):
        url = (
            f"{self.api_base_url}/app/installations/"
            f"{self.installation_id}/access_tokens"
        )
        try:
            response = await client.post(
                url,
                headers={
                    "Authorization": f"Bearer {self.app_jwt()}",
                    "Accept": "application/vnd.github+json",
                },
            )
        except httpx.TransportError as e:
            raise TransientAPIError(
                f"Installation token exchange failed: {e}", url=url
            ) from e
        if response.status_code >= 500:
            raise TransientAPIError(
                f"Installation token exchange failed with HTTP {response.status_code}",
                status=response.status_code,
                url=url,
            )
        if response.status_code != 201:
            raise AuthError(
                f"Installation token exchange failed with HTTP {response.status_code}",
                status=response.status_code,
                url=url,
            )

        try:
            data = response.json()
            token = data["token"]
            expires_at = data.get("expires_at")
            if expires_at:
                expiry = datetime.fromisoformat(expires_at.replace("Z", "+00:00")).timestamp()
            else:
                expiry = self.clock() + 3600
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise AuthError(f"Unexpected installation token response: {e}", url=url) from e

        self._token, self._expires_at = token, expiry - TOKEN_REFRESH_MARGIN_SECONDS
        logger.info(f"Obtained installation token for GitHub App {self.app_id}")


def build_auth(config: ExporterConfig, api_base_url: str):
    """Pick credentials: personal token, then GitHub App, then unauthenticated."""
    if config.github_token:
        logger.info("Authenticating with GitHub token")
        return TokenAuth(config.github_token)

    if config.uses_app_auth:
        logger.info("Authenticating as GitHub App")
        return GitHubAppAuth(
            config.app_id,
            config.app_installation_id,
            config.app_private_key,
            api_base_url,
        )

    if config.app_id or config.app_installation_id or config.app_private_key:
        logger.warning("Incomplete GitHub App credentials, ignoring them")
    logger.warning(
        "No GitHub token or app credentials provided, using unauthenticated "
        "client with a low rate limit"
    )
    return NoAuth()
