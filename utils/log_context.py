"""
Contextual logger for OAuth flows.

Every line logged through it is prefixed with the event, provider and
action it belongs to, and carries the same values as ``extra`` fields.
"""

from __future__ import annotations

import logging
from typing import Any, MutableMapping, Optional, Tuple


class OAuthLogAdapter(logging.LoggerAdapter):
    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        context = " ".join(f"{k}={v}" for k, v in self.extra.items() if v is not None)
        kwargs.setdefault("extra", {}).update(
            {f"oauth_{k}": v for k, v in self.extra.items()}
        )
        return (f"[{context}] {msg}" if context else msg), kwargs


def oauth_logger(
    name: str,
    event_id: Optional[int] = None,
    provider: Optional[str] = None,
    action: Optional[str] = None,
) -> OAuthLogAdapter:
    return OAuthLogAdapter(
        logging.getLogger(name),
        {"event": event_id, "provider": provider, "action": action},
    )
