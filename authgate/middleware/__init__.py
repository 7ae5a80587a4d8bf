"""
AuthGate — Middleware Package
===============================

Cross-cutting concerns applied to every request.

Execution order (outermost first):
    Request → [Request ID] → [Logging] → [CORS] → [Credential Throttle]
            → [Session] → [Access Filter] → [GZip] → Route Handler

    - Request ID first so every later log line is correlated
    - CORS outside the Access Filter: preflight requests carry no cookie
    - Session before Access Filter: the filter reads `request.session`
    - Access Filter before any handler: protected routes never run
      without a principal
"""
