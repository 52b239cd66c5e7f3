"""
connectors — credential lifecycle and sync-state management for external
service connectors.

Provides:
  • Connector CRUD with a sorted, snapshot-swapped in-memory read model
  • Per-connector sync state with edge-triggered notifications
  • Concurrent token validation and refresh across app connectors
  • AES-GCM encryption of tokens at rest, with per-connector IV/salt metadata

Each app provider (Gmail, Google Drive, Notion, …) is a subclass of BaseConnector.
"""
