"""On-device flashcard client: session authentication and set reconciliation.

- session_store: persisted session token, provider and preferences
- oauth: platform-independent OAuth handshake with injected presenters
- auth_gateway: sign-in/sign-out facade and the application SessionContext
- flashcard_store: on-device flashcard set storage
- sync_repository: provenance-tagged view and remote reconciliation
- app: wiring and lifecycle
"""
