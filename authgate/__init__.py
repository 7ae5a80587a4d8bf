"""
AuthGate — Application Package Initializer
============================================

What: Session-based authentication service in front of PostgreSQL, plus a
      registry of named, pooled database clients discovered from a config file.
Who:  Imported by uvicorn (`authgate.main:app`), Alembic, and pytest.

Architecture Note:
    ┌─────────────────────────────────────┐
    │   Middleware (AccessFilter, etc.)   │  ← per-request gate, sessions
    ├─────────────────────────────────────┤
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │      Services (AuthService)         │  ← register / login / logout / me
    ├─────────────────────────────────────┤
    │   ConnectionRegistry (Persistence)  │  ← named async SQLAlchemy engines
    └─────────────────────────────────────┘

    Each layer receives its collaborators explicitly; the registry is built by
    the application factory and handed to routes through dependency injection.
"""

__version__ = "1.0.0"
