# Services package init
"""
AuthGate — Services Layer
===========================

What:  Business logic between routes (HTTP) and the connection registry.
How:   Services take plain values and a session mapping, apply the rules,
       and raise AuthGateError subclasses. Routes receive them through
       FastAPI's dependency injection.

Service Inventory:
    - AuthService:     register / login / logout / me
    - PasswordService: Argon2id hashing, legacy digest verification
"""
