"""
connectors — per-event mail OAuth for Gmail and Outlook.

Provides:
  • OAuth2 auth-URL generation with signed, single-use state
  • Callback handling (code → token exchange → mailbox lookup)
  • Per-event token storage & serialised refresh
  • AES-256-GCM encryption of secrets at rest

Each provider is one immutable ProviderProfile in the registry.
"""
