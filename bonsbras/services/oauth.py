"""
Google OAuth client
Builds the consent URL and exchanges the authorization code for the user's
identity (email + subject).
"""
from typing import Optional, Dict, Any
from urllib.parse import urlencode

import httpx
from fastapi import HTTPException

from ..config import settings
from ..errors import UpstreamError

SUPPORTED_PROVIDERS = {"google"}
CALLBACK_PATH = "/auth/callback"


class GoogleOAuthClient:
    """Client for Google's OAuth 2.0 / OpenID Connect endpoints"""

    authorize_url = "https://accounts.google.com/o/oauth2/v2/auth"
    token_url = "https://oauth2.googleapis.com/token"
    userinfo_url = "https://openidconnect.googleapis.com/v1/userinfo"

    def __init__(self, client_id: Optional[str] = None, client_secret: Optional[str] = None, transport: Optional[httpx.BaseTransport] = None):
        self.client_id = client_id or settings.google_client_id
        self.client_secret = client_secret or settings.google_client_secret
        self._transport = transport

        if not self.client_id or not self.client_secret:
            raise ValueError("GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET are required")

    @property
    def redirect_uri(self) -> str:
        return f"{settings.frontend_base_url}{CALLBACK_PATH}"

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": "openid email profile",
            "state": state,
            "access_type": "online",
            "prompt": "select_account",
        }
        return f"{self.authorize_url}?{urlencode(params)}"

    def _request(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        try:
            with httpx.Client(timeout=15.0, transport=self._transport) as client:
                response = client.request(method, url, **kwargs)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPError as e:
            raise UpstreamError("OAuth provider request failed", str(e))
        except ValueError as e:
            raise UpstreamError("OAuth provider returned invalid JSON", str(e))

    def exchange_code(self, code: str) -> Dict[str, Any]:
        """Exchange an authorization code; returns {email, subject, name}."""
        tokens = self._request(
            "POST",
            self.token_url,
            data={
                "code": code,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": self.redirect_uri,
                "grant_type": "authorization_code",
            },
        )
        access_token = tokens.get("access_token")
        if not access_token:
            raise UpstreamError("OAuth provider returned no access token", None)
        info = self._request("GET", self.userinfo_url, headers={"Authorization": f"Bearer {access_token}"})
        if not info.get("email") or not info.get("sub"):
            raise UpstreamError("OAuth provider returned an incomplete profile", None)
        return {"email": info["email"].lower(), "subject": str(info["sub"]), "name": info.get("name") or ""}


def get_oauth_client(provider: str) -> GoogleOAuthClient:
    if provider not in SUPPORTED_PROVIDERS:
        raise HTTPException(status_code=404, detail=f"Unsupported OAuth provider: {provider}")
    try:
        return GoogleOAuthClient()
    except ValueError as e:
        raise UpstreamError("OAuth provider is not configured", str(e))
