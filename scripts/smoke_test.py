from __future__ import annotations

import argparse
import json
import sys
import urllib.error
import urllib.parse
import urllib.request


def request_json(
    *, url: str, token: str | None = None, user_agent: str | None = None
) -> tuple[int, dict | None, str]:
    request = urllib.request.Request(url, method="GET")
    request.add_header("Accept", "application/json")
    if token:
        request.add_header("Authorization", f"Bearer {token}")
    if user_agent:
        request.add_header("User-Agent", user_agent)
    try:
        with urllib.request.urlopen(request, timeout=20) as response:
            body = response.read().decode("utf-8")
            data = json.loads(body) if body.startswith("{") or body.startswith("[") else None
            return response.status, data, body
    except urllib.error.HTTPError as exc:
        body = exc.read().decode("utf-8")
        try:
            data = json.loads(body)
        except json.JSONDecodeError:
            data = None
        return exc.code, data, body


def assert_true(condition: bool, message: str) -> None:
    if not condition:
        raise RuntimeError(message)


def main() -> int:
    parser = argparse.ArgumentParser(description="Smoke test for the smart links API.")
    parser.add_argument("--base-url", required=True)
    parser.add_argument("--slug", default="", help="Active slug to resolve, if any.")
    parser.add_argument("--token", default="", help="Bearer token for management routes.")
    args = parser.parse_args()

    base_url = args.base_url.rstrip("/")
    token = args.token.strip() or None

    status, data, _ = request_json(url=f"{base_url}/health/ready")
    assert_true(status == 200, f"/health/ready expected 200, got {status}")
    assert_true(isinstance(data, dict) and data.get("status") == "ready", "/health/ready invalid")
    print("OK /health/ready")

    status, data, _ = request_json(url=f"{base_url}/resolve")
    assert_true(status == 400, f"/resolve without slug expected 400, got {status}")
    assert_true(isinstance(data, dict) and "error" in data, "/resolve 400 missing error field")
    print("OK /resolve missing slug")

    status, _, _ = request_json(url=f"{base_url}/resolve?slug=smoke-test-missing-slug")
    assert_true(status == 404, f"/resolve unknown slug expected 404, got {status}")
    print("OK /resolve unknown slug")

    if args.slug:
        query = urllib.parse.urlencode({"slug": args.slug})
        status, data, body = request_json(
            url=f"{base_url}/resolve?{query}",
            user_agent="Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) Mobile",
        )
        assert_true(status == 200, f"/resolve {args.slug} expected 200, got {status}: {body}")
        assert_true(
            isinstance(data, dict) and "chat.whatsapp.com/" in data.get("inviteLink", ""),
            "/resolve returned no invite link",
        )
        print(f"OK /resolve {args.slug} -> {data['groupName']} ({data['deviceType']})")

    if token:
        status, _, _ = request_json(url=f"{base_url}/smart-links", token=token)
        assert_true(status == 200, f"/smart-links with token expected 200, got {status}")
        print("OK /smart-links with token")

    print("Smoke test passed.")
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except Exception as exc:
        print(f"Smoke test failed: {exc}", file=sys.stderr)
        sys.exit(1)
