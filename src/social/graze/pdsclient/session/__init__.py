"""
Session Management

This package owns the authenticated request path.

Key Components:
- state.py: SessionState, the single authoritative in-memory session and base URL
- refresh.py: RefreshCoordinator, single-flight refresh shared by concurrent callers
- executor.py: AuthenticatedRequestExecutor, bearer auth with one refresh-and-retry

A logical call moves through:
Idle -> FirstAttempt -> (Done | NeedsRefresh) -> (ReuseUpdatedSession | AwaitCoordinator)
-> Retry -> (Done | Failed)
"""
