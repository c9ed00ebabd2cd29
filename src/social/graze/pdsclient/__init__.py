"""
PDS Client - Session-aware XRPC client for AT Protocol Personal Data Servers

This package implements the networking core used to talk to a per-account Personal Data
Server (PDS) over the XRPC convention. Its main concern is the authenticated request path:
attaching credentials, detecting session expiry, coordinating a single token refresh among
any number of concurrent callers, and retrying a failed call exactly once.

Key Components:
- model: Session value object shared by every layer
- xrpc: Middleware chain and request transport for `/xrpc/{nsid}` calls
- session: Session state, single-flight refresh coordination and the authenticated executor
- atproto: Session creation and refresh against `com.atproto.server.*`
- resolve: Handle and DID resolution to locate an account's PDS
- client.py: PdsClient facade wiring the components together for one account

Architecture Overview:
1. Request Flow:
   - A call reads the current access token from SessionState
   - RequestTransport executes it through the middleware chain
   - Non-success responses become typed errors

2. Session Renewal:
   - An authentication failure either reuses a session another call already renewed
     or joins the single in-flight refresh incident
   - The refreshed session replaces the current one wholesale and listeners are notified
   - The failed call is retried exactly once

3. Observability:
   - Module level logging, Sentry exception capture and StatsD request metrics

Persistence of credentials is left to the embedding application, which subscribes to
session changes through `PdsClient.on_session_change`.
"""
