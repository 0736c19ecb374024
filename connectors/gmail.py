"""
Gmail — Google OAuth2 web flow profile.

``access_type=offline`` and ``prompt=consent`` make Google issue a refresh
token on every consent.  Google does not rotate refresh tokens.
"""

from __future__ import annotations

from connectors.base import ProviderId, ProviderProfile

GMAIL = ProviderProfile(
    provider_id=ProviderId.GMAIL,
    display_name="Gmail",
    vendor_name="Google",
    authorization_endpoint="https://accounts.google.com/o/oauth2/v2/auth",
    token_endpoint="https://oauth2.googleapis.com/token",
    user_info_endpoint="https://www.googleapis.com/userinfo/v2/me",
    scopes=(
        "https://www.googleapis.com/auth/gmail.send",
        "https://www.googleapis.com/auth/userinfo.email",
    ),
    extra_authorize_params=(
        ("access_type", "offline"),   # gets refresh_token
        ("prompt", "consent"),        # force consent to always get refresh_token
    ),
    email_fields=("email",),
    console_hint="Check redirect URI matches the one configured in Google Cloud Console",
)
