"""
Xero OAuth Token Manager
========================

Xero token handling backed by the xero_settings row in Supabase.

Xero rotates refresh tokens on every refresh, so each new refresh
token is written back immediately. There is no locking: two
concurrent refreshes can race and the loser's refresh token is lost.
"""

from typing import Optional
from datetime import datetime, timedelta, timezone

import httpx
from aws_lambda_powertools import Logger

from .supabase_client import SupabaseClient

logger = Logger()

# Xero identity endpoint (authorization_code and refresh_token grants)
XERO_TOKEN_URL = "https://identity.xero.com/connect/token"

# Token buffer (refresh 5 minutes before expiry)
TOKEN_BUFFER_SECONDS = 300


class XeroTokenManager:
    """
    Manages Xero OAuth tokens for the single connected organisation.

    Client credentials, the refresh token and the cached access token
    all live on the xero_settings row.
    """

    def __init__(
        self,
        supabase: SupabaseClient,
        settings: Optional[dict] = None,
        http_client: Optional[httpx.Client] = None
    ):
        self.supabase = supabase
        self._settings = settings
        self._http = http_client or httpx.Client(timeout=30.0)

    @property
    def settings(self) -> dict:
        """Xero settings row, loaded once per manager."""
        if self._settings is None:
            self._settings = self.supabase.get_xero_settings()
            if not self._settings:
                raise TokenRefreshError("Xero integration is not configured")
        return self._settings

    def get_access_token(self, force_refresh: bool = False) -> str:
        """
        Get a valid Xero access token, refreshing if necessary.

        Args:
            force_refresh: Force token refresh even if not expired

        Returns:
            Valid access token string

        Raises:
            TokenRefreshError: If token refresh fails
        """
        if not force_refresh and self._has_valid_access_token():
            logger.debug("Using stored access token (still valid)")
            return self.settings["access_token"]

        logger.info("Access token expired or expiring soon, refreshing...")
        return self._refresh_token()

    def _has_valid_access_token(self) -> bool:
        token = self.settings.get("access_token")
        expires_at = self.settings.get("token_expires_at")
        if not token or not expires_at:
            return False

        try:
            expiry = datetime.fromisoformat(str(expires_at).replace("Z", "+00:00"))
        except ValueError:
            return False
        if expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)

        return expiry > datetime.now(timezone.utc) + timedelta(seconds=TOKEN_BUFFER_SECONDS)

    def _refresh_token(self) -> str:
        """
        Exchange the stored refresh token for a new token pair.

        Returns:
            New access token

        Raises:
            TokenRefreshError: If refresh fails
        """
        refresh_token = self.settings.get("refresh_token")
        if not refresh_token:
            raise TokenRefreshError("No refresh token available")

        new_tokens = self._call_token_endpoint({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        })

        self.store_tokens(new_tokens)
        logger.info("Successfully refreshed Xero access token")
        return new_tokens["access_token"]

    def exchange_authorization_code(self, code: str, redirect_uri: str) -> dict:
        """
        Exchange an OAuth authorization code for tokens.

        The tokens are returned, not stored; the caller persists them
        together with the tenant once the connection is confirmed.

        Raises:
            TokenRefreshError: If the exchange fails or no refresh token is issued
        """
        logger.info("Exchanging authorization code for tokens", extra={"code_prefix": code[:10]})

        tokens = self._call_token_endpoint({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
        })

        if not tokens.get("refresh_token"):
            raise TokenRefreshError(
                "No refresh token received from Xero. Make sure offline_access scope is included."
            )

        return tokens

    def _call_token_endpoint(self, data: dict) -> dict:
        """
        Call the Xero identity endpoint with Basic client authentication.

        Returns:
            Dictionary with access_token, refresh_token, expires_in
        """
        client_id = self.settings.get("client_id")
        client_secret = self.settings.get("client_secret")

        if not client_id or not client_secret:
            raise TokenRefreshError("Xero Client ID and Client Secret must be configured first")

        response = self._http.post(
            XERO_TOKEN_URL,
            headers={
                "Accept": "application/json",
                "Content-Type": "application/x-www-form-urlencoded",
            },
            data=data,
            auth=(client_id, client_secret),
        )

        if response.status_code != 200:
            logger.error(f"Xero token request failed: {response.status_code} - {response.text}")
            raise TokenRefreshError(f"Xero token endpoint returned {response.status_code}: {response.text}")

        result = response.json()

        return {
            "access_token": result["access_token"],
            "refresh_token": result.get("refresh_token"),
            "expires_in": result.get("expires_in", 1800),
        }

    def store_tokens(self, tokens: dict, **extra) -> dict:
        """
        Persist a token pair (and any extra columns) to xero_settings.

        The refresh token column is only overwritten when Xero
        actually returned a new one.
        """
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(tokens.get("expires_in", 1800)))

        update = {
            "access_token": tokens["access_token"],
            "token_expires_at": expires_at.isoformat(),
            **extra,
        }
        if tokens.get("refresh_token"):
            update["refresh_token"] = tokens["refresh_token"]

        self.supabase.update_xero_settings(self.settings["id"], dict(update))
        self.settings.update(update)

        logger.info("Stored Xero tokens", extra={"expires_at": update["token_expires_at"]})
        return update


class TokenRefreshError(Exception):
    """Raised when a Xero token request fails."""
    pass
