"""
Provider registry — read-only lookup from provider name to profile.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Dict, List, Mapping, Optional

from connectors.base import ProviderProfile
from connectors.gmail import GMAIL
from connectors.outlook import OUTLOOK

# ── All known providers ──────────────────────────────────────────────────

PROVIDERS: Mapping[str, ProviderProfile] = MappingProxyType(
    {profile.name: profile for profile in (GMAIL, OUTLOOK)}
)


def get_provider(provider: str) -> Optional[ProviderProfile]:
    """Get a profile by provider name, or None if unsupported."""
    return PROVIDERS.get(provider)


def list_providers() -> List[Dict[str, str]]:
    """Return display info about all supported providers."""
    return [
        {"provider": p.name, "display_name": p.display_name}
        for p in PROVIDERS.values()
    ]
