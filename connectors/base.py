"""
ProviderProfile — static description of an OAuth2 mail provider.

Every provider (Gmail, Outlook) is one immutable instance of this class;
the flow logic never branches on the provider name.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import urlencode


class ProviderId(str, Enum):
    GMAIL = "gmail"
    OUTLOOK = "outlook"


@dataclass(frozen=True)
class ProviderProfile:
    """Endpoints, scopes and quirks of one provider."""

    provider_id: ProviderId
    display_name: str
    vendor_name: str
    authorization_endpoint: str
    token_endpoint: str
    user_info_endpoint: str
    scopes: Tuple[str, ...]
    # Extra query parameters appended to the authorize URL.
    extra_authorize_params: Tuple[Tuple[str, str], ...] = ()
    # User-info keys tried in order for the connected mailbox address.
    email_fields: Tuple[str, ...] = ("email",)
    # Whether the refresh grant must repeat the original scope.
    resend_scope_on_refresh: bool = False
    # Shown when the provider rejects a code exchange without a description.
    console_hint: str = ""

    @property
    def name(self) -> str:
        return self.provider_id.value

    @property
    def scope_string(self) -> str:
        return " ".join(self.scopes)

    def build_authorize_url(self, client_id: str, redirect_uri: str, state: str) -> str:
        """Build the provider's OAuth2 authorization URL."""
        params = [
            ("client_id", client_id),
            ("redirect_uri", redirect_uri),
            ("response_type", "code"),
            ("scope", self.scope_string),
            *self.extra_authorize_params,
            ("state", state),
        ]
        return f"{self.authorization_endpoint}?{urlencode(params)}"

    def code_exchange_form(
        self, code: str, client_id: str, client_secret: str, redirect_uri: str
    ) -> Dict[str, str]:
        return {
            "code": code,
            "client_id": client_id,
            "client_secret": client_secret,
            "redirect_uri": redirect_uri,
            "grant_type": "authorization_code",
        }

    def refresh_form(
        self, refresh_token: str, client_id: str, client_secret: str
    ) -> Dict[str, str]:
        form = {
            "client_id": client_id,
            "client_secret": client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        if self.resend_scope_on_refresh:
            form["scope"] = self.scope_string
        return form

    def extract_email(self, user_info: Mapping[str, Any]) -> Optional[str]:
        """Pull the connected account's address out of a user-info response."""
        for key in self.email_fields:
            value = user_info.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return None
