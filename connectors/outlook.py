"""
Outlook — Microsoft identity platform v2 profile.

Microsoft may hand back a new refresh token on any refresh; the refresh
grant must repeat the scope.
"""

from __future__ import annotations

from connectors.base import ProviderId, ProviderProfile

OUTLOOK = ProviderProfile(
    provider_id=ProviderId.OUTLOOK,
    display_name="Outlook",
    vendor_name="Microsoft",
    authorization_endpoint="https://login.microsoftonline.com/common/oauth2/v2.0/authorize",
    token_endpoint="https://login.microsoftonline.com/common/oauth2/v2.0/token",
    user_info_endpoint="https://graph.microsoft.com/v1.0/me",
    scopes=(
        "offline_access",
        "https://graph.microsoft.com/mail.send",
        "https://graph.microsoft.com/user.read",
    ),
    email_fields=("mail", "userPrincipalName"),
    resend_scope_on_refresh=True,
    console_hint="Check redirect URI matches the one configured in Azure portal",
)
