"""
AT Protocol Authentication

Session creation and renewal against the `com.atproto.server` namespace.

Key Components:
- auth.py: create_session (login with identifier and password) and refresh_session, the
  default refresh operation injected into the RefreshCoordinator

Both operations use RequestTransport directly. They never go through the authenticated
executor, so a failing refresh cannot trigger another refresh.
"""
