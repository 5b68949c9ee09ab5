"""
connectors — third-party integrations behind one interface.

Provides:
  • per-provider OAuth config and code exchange (Google, GitHub, Slack, Figma)
  • Merge.dev account linking for Slack
  • per-user token storage, refresh and revocation
  • Fernet encryption of tokens at rest
  • read-only data fetchers that reshape provider payloads for the dashboard

Each provider is a subclass of BaseConnector.
"""
