"""
AuthGate — Access Filter Tests
================================

What we test:
    ✅ Route table classification (exact vs mount rules)
    ✅ Prefix look-alikes of public routes stay protected
    ✅ Dot segments never reach a public mount
    ✅ Unauthenticated API requests → 401 JSON, pages → 302 to login
    ✅ Authenticated requests pass through
"""

import pytest

from authgate.middleware.access import (
    DEFAULT_ROUTE_TABLE,
    AccessPolicy,
    RouteRule,
    has_dot_segments,
    is_api_path,
)


class TestRouteRule:

    def test_exact(self):
        rule = RouteRule("/api/login")
        assert rule.matches("/api/login")
        assert not rule.matches("/api/login/")
        assert not rule.matches("/api/loginx")

    def test_mount(self):
        rule = RouteRule("/css", mount=True)
        assert rule.matches("/css")
        assert rule.matches("/css/app.css")
        assert rule.matches("/css/vendor/reset.css")
        assert not rule.matches("/cssx")
        assert not rule.matches("/cssx/app.css")


class TestAccessPolicy:

    @pytest.mark.parametrize(
        "path",
        [
            "/",
            "/login.html",
            "/register.html",
            "/css/app.css",
            "/js/auth.js",
            "/fonts/inter.woff2",
            "/api/register",
            "/api/login",
            "/api/logout",
            "/health",
        ],
    )
    def test_public(self, path):
        assert AccessPolicy(DEFAULT_ROUTE_TABLE).is_public(path)

    @pytest.mark.parametrize(
        "path",
        [
            "/api/me",
            "/dashboard.html",
            "/cssx",
            "/login.html.bak",
            "/api/register/admin",
            "/api/loginx",
            "/healthz",
            "/docs",
        ],
    )
    def test_protected(self, path):
        assert not AccessPolicy(DEFAULT_ROUTE_TABLE).is_public(path)

    def test_docs_follow_settings(self, test_settings):
        enabled = AccessPolicy.from_settings(test_settings.model_copy(update={"docs_enabled": True}))
        disabled = AccessPolicy.from_settings(test_settings.model_copy(update={"docs_enabled": False}))

        assert enabled.is_public("/openapi.json")
        assert enabled.is_public("/docs/oauth2-redirect")
        assert not disabled.is_public("/openapi.json")

    def test_explicit_private_rule(self):
        policy = AccessPolicy([RouteRule("/admin.html", public=False), RouteRule("/")])
        assert not policy.is_public("/admin.html")
        assert policy.rule_for("/admin.html").public is False

    @pytest.mark.parametrize(
        "path",
        [
            "/css/../dashboard.html",
            "/css/%2e%2e/dashboard.html",
            "/css/%2E%2E/dashboard.html",
            "/js/./../api/me",
            "/css/..%5cdashboard.html",
        ],
    )
    def test_dot_segments_are_protected(self, path):
        assert not AccessPolicy(DEFAULT_ROUTE_TABLE).is_public(path)


def test_has_dot_segments():
    assert has_dot_segments("/css/../x")
    assert has_dot_segments("/css/%2e/x")
    assert not has_dot_segments("/css/app.min.css")
    assert not has_dot_segments("/css/..hidden")


def test_is_api_path():
    assert is_api_path("/api/me")
    assert not is_api_path("/apidocs")
    assert not is_api_path("/dashboard.html")


class TestMiddleware:

    @pytest.mark.asyncio
    async def test_api_without_session_is_401(self, test_client):
        response = await test_client.get("/api/me")

        assert response.status_code == 401
        assert response.json() == {"error": "not_authenticated", "message": "Not authenticated"}

    @pytest.mark.asyncio
    async def test_unknown_api_path_without_session_is_401(self, test_client):
        response = await test_client.post("/api/admin/reset")
        assert response.status_code == 401

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["/dashboard", "/dashboard.html"])
    async def test_page_without_session_redirects(self, test_client, path):
        response = await test_client.get(path)

        assert response.status_code == 302
        assert response.headers["location"] == "/login.html"

    @pytest.mark.asyncio
    async def test_lookalike_prefix_redirects(self, test_client):
        response = await test_client.get("/cssx")
        assert response.status_code == 302

    @pytest.mark.asyncio
    async def test_encoded_dot_segments_redirect(self, test_client):
        response = await test_client.get("/css/%2e%2e/dashboard.html")

        assert response.status_code == 302
        assert response.headers["location"] == "/login.html"
        assert "Dashboard" not in response.text

    @pytest.mark.asyncio
    async def test_static_assets_are_public(self, test_client):
        response = await test_client.get("/css/app.css")

        assert response.status_code == 200
        assert "margin" in response.text

    @pytest.mark.asyncio
    async def test_root_and_login_page_are_public(self, test_client):
        assert (await test_client.get("/")).status_code == 200
        assert (await test_client.get("/login.html")).status_code == 200

    @pytest.mark.asyncio
    async def test_authenticated_page_passes(self, test_client):
        await test_client.post(
            "/api/register",
            json={"username": "nina", "email": "nina@example.com", "password": "pw"},
        )
        await test_client.post("/api/login", json={"username": "nina", "password": "pw"})

        response = await test_client.get("/dashboard.html")

        assert response.status_code == 200
        assert "Dashboard" in response.text
