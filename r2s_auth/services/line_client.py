"""
LINE Login client.

Verifies a LINE id token against the LINE verify endpoint and fetches the
current profile with the LINE access token. Only the fields the identity
resolver needs are kept.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import requests

from r2s_auth.core.config import Settings
from r2s_auth.core.errors import SocialAuthFailed

logger = logging.getLogger(__name__)

LINE_VERIFY_URL = "https://api.line.me/oauth2/v2.1/verify"
LINE_PROFILE_URL = "https://api.line.me/v2/profile"


@dataclass(frozen=True)
class SocialProfile:
    user_id: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    email: Optional[str] = None


class LineClient:
    def __init__(self, settings: Settings, http: Optional[requests.Session] = None):
        self.channel_id = settings.LINE_CHANNEL_ID
        self.timeout = settings.LINE_API_TIMEOUT
        self.http = http or requests.Session()

    def fetch_profile(self, id_token: str, access_token: str) -> SocialProfile:
        """
        Verify the id token and load the profile behind the access token.

        Raises:
            SocialAuthFailed: channel not configured, token rejected, audience
                mismatch, subject mismatch or LINE unreachable
        """
        if not self.channel_id:
            raise SocialAuthFailed("LINE login is not configured")
        if not id_token or not access_token:
            raise SocialAuthFailed("Missing LINE tokens")

        try:
            verify = self.http.post(
                LINE_VERIFY_URL,
                data={"id_token": id_token, "client_id": self.channel_id},
                timeout=self.timeout,
            )
            verify.raise_for_status()
            id_claims = verify.json()

            profile = self.http.get(
                LINE_PROFILE_URL,
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=self.timeout,
            )
            profile.raise_for_status()
            profile_data = profile.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("LINE token verification failed: %s", e.__class__.__name__)
            raise SocialAuthFailed() from e

        if str(id_claims.get("aud")) != str(self.channel_id):
            logger.warning("LINE id token issued for another channel")
            raise SocialAuthFailed("Invalid LINE token")

        subject = id_claims.get("sub")
        if not subject:
            raise SocialAuthFailed("Invalid LINE token")
        if profile_data.get("userId") and profile_data["userId"] != subject:
            logger.warning("LINE id token and access token belong to different users")
            raise SocialAuthFailed("Invalid LINE token")

        return SocialProfile(
            user_id=subject,
            display_name=profile_data.get("displayName") or id_claims.get("name"),
            avatar_url=profile_data.get("pictureUrl") or id_claims.get("picture"),
            email=id_claims.get("email"),
        )
