"""
Microsoft Graph API Client
==========================

App-only (client credentials) access to Microsoft Graph for
directory user sync.
"""

from typing import Optional

import httpx
from aws_lambda_powertools import Logger

logger = Logger()

GRAPH_API_URL = "https://graph.microsoft.com/v1.0"
MICROSOFT_LOGIN_URL = "https://login.microsoftonline.com"
GRAPH_DEFAULT_SCOPE = "https://graph.microsoft.com/.default"

USER_FIELDS = "id,displayName,mail,userPrincipalName,jobTitle,department,accountEnabled"


class MicrosoftGraphClient:
    """
    Microsoft Graph client for one Azure AD tenant.

    Handles:
    - Client credentials token requests
    - Paged user listing
    - Group membership lookups
    """

    def __init__(self, http_client: Optional[httpx.Client] = None):
        self._http = http_client or httpx.Client(timeout=30.0)
        self.access_token: Optional[str] = None

    def get_access_token(self, tenant_id: str, client_id: str, client_secret: str) -> dict:
        """
        Request an app-only access token.

        Returns:
            Token response with access_token and expires_in

        Raises:
            GraphAPIError: If the token request fails
        """
        response = self._http.post(
            f"{MICROSOFT_LOGIN_URL}/{tenant_id}/oauth2/v2.0/token",
            data={
                "grant_type": "client_credentials",
                "scope": GRAPH_DEFAULT_SCOPE,
                "client_id": client_id,
                "client_secret": client_secret,
            },
        )

        if response.status_code != 200:
            logger.error(f"Graph token request failed: {response.status_code} - {response.text}")
            raise GraphAPIError(
                f"Failed to get access token: {response.text}",
                status_code=response.status_code,
                response_body=response.text
            )

        token = response.json()
        self.access_token = token["access_token"]
        return token

    def _get(self, url: str) -> httpx.Response:
        return self._http.get(url, headers={
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        })

    def get_all_users(self) -> list[dict]:
        """
        Fetch every user in the directory, following @odata.nextLink.

        Raises:
            GraphAPIError: If any page fails
        """
        users = []
        next_link: Optional[str] = f"{GRAPH_API_URL}/users?$select={USER_FIELDS}"

        while next_link:
            response = self._get(next_link)
            if response.status_code != 200:
                raise GraphAPIError(
                    f"Failed to fetch users: {response.text}",
                    status_code=response.status_code,
                    response_body=response.text
                )
            data = response.json()
            users.extend(data.get("value", []))
            next_link = data.get("@odata.nextLink")

        logger.info(f"Fetched {len(users)} directory users")
        return users

    def get_user_groups(self, user_id: str) -> list[dict]:
        """
        Groups the user is a direct member of.

        Returns an empty list when the lookup fails.
        """
        response = self._get(f"{GRAPH_API_URL}/users/{user_id}/memberOf?$select=id,displayName")
        if response.status_code != 200:
            logger.warning(f"Group lookup failed for {user_id}: {response.status_code}")
            return []
        return response.json().get("value", [])


class GraphAPIError(Exception):
    """Raised when Microsoft Graph or the identity platform returns an error."""

    def __init__(self, message: str, status_code: int = 0, response_body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body
