"""
auth — admin authentication for the OAuth API.

Provides:
  • signed bearer token creation & verification
  • ``require_admin`` FastAPI dependency
"""
