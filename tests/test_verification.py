from __future__ import annotations

import json
from urllib.error import URLError

import jwt

from plan.validate import parse_plan
from verification.probes import HttpResponse, Verifier, sample_row, rls_targets
from verification.tokens import mint_token, probe_identities, read_token

SECRET = "test-secret-with-enough-length-for-hs256"


def _plan(**extra):
    return parse_plan({
        "version": 1,
        "summary": "verify",
        "steps": [
            {"kind": "table", "table": {
                "name": "todos",
                "columns": [
                    {"name": "id", "type": "uuid", "pk": True, "default": "gen_random_uuid()"},
                    {"name": "title", "type": "text"},
                    {"name": "user_id", "type": "uuid"},
                ],
                "policy": {"preset": "owner"},
            }},
            {"kind": "table", "table": {
                "name": "posts",
                "columns": [{"name": "id", "type": "uuid", "pk": True}, {"name": "body", "type": "text"}],
                "policy": {"preset": "public_read"},
            }},
            {"kind": "function", "function": {"name": "hello"}},
        ],
        **extra,
    })


class _FakeStack:
    """Answers probe requests the way a healthy deployment would."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, object, object]] = []
        self.rows: list[dict] = []
        self.down: set[str] = set()

    def __call__(self, method, url, body=None, token=None):  # type: ignore[no-untyped-def]
        self.calls.append((method, url, body, token))
        for prefix in self.down:
            if url.startswith(prefix):
                raise URLError("connection refused")
        if url.endswith("/health") or url == "http://api.test/":
            return HttpResponse(200, b"{}")
        if url.startswith("http://fn.test/fn/"):
            return HttpResponse(200, json.dumps({"ok": True, "dryRun": True}).encode())
        if url == "http://api.test/posts":
            if method == "GET":
                return HttpResponse(200, b"[]")
            return HttpResponse(201 if token else 401, b"")
        if url == "http://api.test/todos":
            if method == "POST":
                self.rows.append(dict(body))
                return HttpResponse(201, b"")
            caller = read_token(token, SECRET)["sub"]
            visible = [row for row in self.rows if row.get("user_id") == caller]
            return HttpResponse(200, json.dumps(visible).encode())
        return HttpResponse(404, b"{}")


def _verifier(stack: _FakeStack) -> Verifier:
    verifier = Verifier(
        api_url="http://api.test",
        auth_url="http://auth.test",
        functions_url="http://fn.test",
        timeout_s=1,
        jwt_secret=SECRET,
    )
    verifier._send = stack  # type: ignore[method-assign]
    return verifier


def test_healthy_stack_passes() -> None:
    stack = _FakeStack()

    result = _verifier(stack).verify(_plan())

    assert result.success, (result.failed, result.errors)
    assert "todos: owner isolation holds" in result.passed
    assert "posts: anonymous read allowed" in result.passed
    assert "posts: anonymous write rejected" in result.passed
    assert "posts: authenticated write allowed" in result.passed
    assert "Function hello: dry run ok" in result.passed
    fn_call = [c for c in stack.calls if c[1] == "http://fn.test/fn/hello"][0]
    assert fn_call[2]["dryRun"] is True


def test_leaking_rows_fail_isolation() -> None:
    stack = _FakeStack()

    def _leaky(method, url, body=None, token=None):  # type: ignore[no-untyped-def]
        if url == "http://api.test/todos" and method == "GET":
            return HttpResponse(200, json.dumps(stack.rows).encode())
        return stack(method, url, body, token)

    verifier = _verifier(stack)
    verifier._send = _leaky  # type: ignore[method-assign]
    result = verifier.verify(_plan())

    assert result.success is False
    assert any("owner isolation broken" in f for f in result.failed)


def test_unreachable_service_does_not_hide_other_categories() -> None:
    stack = _FakeStack()
    stack.down.add("http://auth.test")

    result = _verifier(stack).verify(_plan())

    assert result.success is False
    assert any(f.startswith("Auth: not reachable") for f in result.failed)
    assert "todos: owner isolation holds" in result.passed
    assert "Function hello: dry run ok" in result.passed


def test_category_error_is_isolated() -> None:
    stack = _FakeStack()

    def _bad_json(method, url, body=None, token=None):  # type: ignore[no-untyped-def]
        if url == "http://api.test/todos" and method == "GET":
            return HttpResponse(200, b"<html>")
        return stack(method, url, body, token)

    verifier = _verifier(stack)
    verifier._send = _bad_json  # type: ignore[method-assign]
    result = verifier.verify(_plan())

    assert result.success is False
    assert any(e.startswith("rls:") for e in result.errors)
    assert "Function hello: dry run ok" in result.passed


def test_rejected_foreign_write_gives_no_isolation_verdict() -> None:
    stack = _FakeStack()

    def _read_only(method, url, body=None, token=None):  # type: ignore[no-untyped-def]
        if url == "http://api.test/todos" and method == "POST":
            return HttpResponse(403, b"{}")
        return stack(method, url, body, token)

    verifier = _verifier(stack)
    verifier._send = _read_only  # type: ignore[method-assign]
    result = verifier.verify(_plan())

    assert result.success is False
    assert "todos: write as second caller rejected (HTTP 403)" in result.failed
    assert not any(p.startswith("todos:") for p in result.passed)
    assert not [c for c in stack.calls if c[1] == "http://api.test/todos" and c[0] == "GET"]


def test_public_read_table_must_accept_authenticated_writes() -> None:
    stack = _FakeStack()

    def _locked(method, url, body=None, token=None):  # type: ignore[no-untyped-def]
        if url == "http://api.test/posts" and method == "POST":
            return HttpResponse(401, b"{}")
        return stack(method, url, body, token)

    verifier = _verifier(stack)
    verifier._send = _locked  # type: ignore[method-assign]
    result = verifier.verify(_plan())

    assert result.success is False
    assert "posts: authenticated write blocked (HTTP 401)" in result.failed
    assert "posts: anonymous write rejected" in result.passed


def test_custom_smoke_checks_resolve_token_placeholders() -> None:
    stack = _FakeStack()
    plan = _plan(verification={"smoke": [
        {"method": "GET", "path": "/todos", "expect": 200, "token": "$TOKEN_A"},
        {"method": "POST", "path": "/posts", "expect": 201, "body": {"body": "x"}},
    ]})

    result = _verifier(stack).verify(plan)

    smoke_call = [c for c in stack.calls if c[1] == "http://api.test/todos" and c[0] == "GET"][-1]
    assert read_token(smoke_call[3], SECRET)["role"] == "authenticated"
    assert "GET /todos -> 200" in result.passed
    assert "POST /posts -> expected 201, got 401" in result.failed


def test_team_scope_rows_carry_distinct_orgs() -> None:
    plan = parse_plan({"version": 1, "summary": "t", "steps": [
        {"kind": "table", "table": {"name": "projects", "columns": [
            {"name": "id", "type": "uuid", "pk": True},
            {"name": "org_id", "type": "uuid"},
            {"name": "name", "type": "text"},
            {"name": "seats", "type": "integer"},
        ], "policy": {"preset": "team_scope"}}},
    ]})
    a, b = probe_identities(SECRET)
    target = rls_targets(plan)[0]

    assert a.org_id != b.org_id
    assert read_token(b.token, SECRET)["org_id"] == b.org_id
    assert sample_row(target, b) == {"org_id": b.org_id, "name": "verify-name", "seats": 1}


def test_minted_tokens_are_hs256_with_audience() -> None:
    token = mint_token("user-1", secret=SECRET)

    header = jwt.get_unverified_header(token)
    claims = read_token(token, SECRET)
    assert header["alg"] == "HS256"
    assert claims["sub"] == "user-1"
    assert claims["aud"] == "authenticated"
    assert claims["exp"] > claims["iat"]
    assert "org_id" not in claims
