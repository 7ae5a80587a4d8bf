"""
AuthGate — API Routes Package
===============================

Route Inventory:
    - auth.py:    POST /api/register, POST /api/login,
                  POST /api/logout,  GET /api/me
    - health.py:  GET /health, GET /api/hello

Static pages and assets (/, /login.html, /css/...) are served by the
StaticFiles mount registered in main.py. Which of these routes are public
is decided by the route table in authgate.middleware.access.
"""
