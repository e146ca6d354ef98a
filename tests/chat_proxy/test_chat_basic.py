import gzip
import json

import brotli
import httpx
from fastapi.testclient import TestClient

from fakes import (
    API_KEY,
    CLIENT_HEADERS,
    UPSTREAM,
    chat_request,
    completion,
    upstream_response,
)


def _json(request: httpx.Request):
    return json.loads(request.content)


def test_chat_basic(make_proxy):
    app, _, sent = make_proxy(lambda request: upstream_response(json_body=completion("Hello")))
    client = TestClient(app)

    r = client.post("/v1/chat/completions", json=chat_request(), headers=CLIENT_HEADERS)

    assert r.status_code == 200
    data = r.json()
    assert data["model"] == "gpt-4o"
    assert data["object"] == "chat.completion"
    assert data["choices"][0]["message"]["content"] == "Hello"
    assert data["usage"]["total_tokens"] == 12

    [upstream] = sent
    assert str(upstream.url) == UPSTREAM + "/chat/completions"
    body = _json(upstream)
    assert body["model"] == "openai/gpt-4o"
    assert body["messages"] == [{"role": "user", "content": "Hi"}]
    assert "temperature" not in body and "max_tokens" not in body


def test_model_follows_runtime_config(make_proxy):
    app, _, sent = make_proxy(lambda request: upstream_response(json_body=completion("ok")))
    client = TestClient(app)

    client.post("/v1/config", json={"model": "anthropic/claude-3-opus"})
    r = client.post("/v1/chat/completions", json=chat_request(), headers=CLIENT_HEADERS)

    assert r.status_code == 200
    assert r.json()["model"] == "gpt-4o"
    assert _json(sent[0])["model"] == "anthropic/claude-3-opus"


def test_upstream_headers(make_proxy):
    app, _, sent = make_proxy(lambda request: upstream_response(json_body=completion("ok")))
    TestClient(app).post(
        "/v1/chat/completions?trace=1",
        json=chat_request(),
        headers={
            **CLIENT_HEADERS,
            "X-Forwarded-For": "10.0.0.1",
            "X-Real-Ip": "10.0.0.1",
            "X-Custom": "leak",
        },
    )

    headers = sent[0].headers
    assert headers["Authorization"] == f"Bearer {API_KEY}"
    assert headers["Content-Type"] == "application/json"
    assert headers["Accept"] == "application/json"
    assert headers["User-Agent"].startswith("routerbridge/")
    assert headers["HTTP-Referer"] == "http://127.0.0.1:9000"
    assert headers["X-Title"] == "routerbridge"
    assert headers["OpenAI-Organization"] == "routerbridge"
    assert "X-Model-Provider" not in headers
    for name in ("X-Forwarded-For", "X-Real-Ip", "X-Custom"):
        assert name not in headers
    assert sent[0].url.query == b"trace=1"


def test_provider_header_and_policy_for_google(make_proxy):
    app, _, sent = make_proxy(
        lambda request: upstream_response(json_body=completion("ok")), model="google/gemini-pro"
    )
    TestClient(app).post(
        "/v1/chat/completions",
        json=chat_request(temperature=1.7, max_tokens=32),
        headers=CLIENT_HEADERS,
    )
    assert sent[0].headers["X-Model-Provider"] == "google"
    body = _json(sent[0])
    assert body["temperature"] == 1.0
    assert body["max_tokens"] == 32


def test_missing_or_bad_authorization(make_proxy):
    app, _, sent = make_proxy(lambda request: upstream_response(json_body=completion("x")))
    client = TestClient(app)

    r = client.post("/v1/chat/completions", json=chat_request())
    assert r.status_code == 401
    assert r.json()["error"]["message"] == "Missing or invalid Authorization header"

    r = client.post(
        "/v1/chat/completions",
        json=chat_request(),
        headers={"Authorization": "Bearer pk-live-123"},
    )
    assert r.status_code == 401
    assert r.json()["error"]["message"] == "Invalid API key format"
    assert sent == []


def test_unsupported_model_makes_no_upstream_call(make_proxy):
    app, _, sent = make_proxy(lambda request: upstream_response(json_body=completion("x")))
    r = TestClient(app).post(
        "/v1/chat/completions", json=chat_request(model="gpt-3.5-turbo"), headers=CLIENT_HEADERS
    )
    assert r.status_code == 400
    assert r.json()["error"]["type"] == "unsupported_model"
    assert sent == []


def test_malformed_request_body(make_proxy):
    app, _, sent = make_proxy(lambda request: upstream_response(json_body=completion("x")))
    client = TestClient(app)

    r = client.post(
        "/v1/chat/completions",
        content=b"{broken",
        headers={**CLIENT_HEADERS, "Content-Type": "application/json"},
    )
    assert r.status_code == 400
    assert r.json()["error"]["type"] == "decode_error"

    r = client.post(
        "/v1/chat/completions",
        json={"model": "gpt-4o", "messages": [{"role": "wizard", "content": "x"}]},
        headers=CLIENT_HEADERS,
    )
    assert r.status_code == 400
    assert r.json()["error"]["type"] == "invalid_request"
    assert sent == []


def test_multiple_choices_round_trip(make_proxy):
    app, _, _ = make_proxy(
        lambda request: upstream_response(json_body=completion("a", "b", "c", model="x/y"))
    )
    r = TestClient(app).post("/v1/chat/completions", json=chat_request(), headers=CLIENT_HEADERS)
    data = r.json()
    assert data["model"] == "gpt-4o"
    assert [c["index"] for c in data["choices"]] == [0, 1, 2]
    assert [c["message"]["content"] for c in data["choices"]] == ["a", "b", "c"]


def test_gzip_and_brotli_upstream_bodies(make_proxy):
    raw = json.dumps(completion("zipped")).encode()
    for encoding, encoded in (("gzip", gzip.compress(raw)), ("br", brotli.compress(raw))):
        app, _, _ = make_proxy(
            lambda request, encoded=encoded, encoding=encoding: upstream_response(
                body=encoded,
                headers={"content-type": "application/json", "content-encoding": encoding},
            )
        )
        r = TestClient(app).post(
            "/v1/chat/completions", json=chat_request(), headers=CLIENT_HEADERS
        )
        assert r.status_code == 200, encoding
        assert r.json()["choices"][0]["message"]["content"] == "zipped"


def test_corrupt_compressed_body_is_500(make_proxy):
    app, _, _ = make_proxy(
        lambda request: upstream_response(
            body=b"definitely not gzip", headers={"content-encoding": "gzip"}
        )
    )
    r = TestClient(app).post("/v1/chat/completions", json=chat_request(), headers=CLIENT_HEADERS)
    assert r.status_code == 500
    assert r.json()["error"]["type"] == "decode_error"


def test_upstream_error_passthrough(make_proxy):
    app, _, _ = make_proxy(
        lambda request: upstream_response(
            status=429,
            json_body={"error": {"message": "Rate limit exceeded", "type": "rate_limit", "code": 429}},
        )
    )
    r = TestClient(app).post("/v1/chat/completions", json=chat_request(), headers=CLIENT_HEADERS)
    assert r.status_code == 429
    assert r.json()["error"] == {
        "type": "rate_limit",
        "code": 429,
        "message": "Rate limit exceeded",
    }


def test_unstructured_upstream_error_returned_raw(make_proxy):
    app, _, _ = make_proxy(
        lambda request: upstream_response(status=503, body=b"upstream overloaded")
    )
    r = TestClient(app).post("/v1/chat/completions", json=chat_request(), headers=CLIENT_HEADERS)
    assert r.status_code == 503
    assert r.content == b"upstream overloaded"


def test_unstructured_upstream_error_keeps_content_type(make_proxy):
    page = b"<html><body>502 Bad Gateway</body></html>"
    app, _, _ = make_proxy(
        lambda request: upstream_response(
            status=502, body=page, headers={"content-type": "text/html"}
        )
    )
    r = TestClient(app).post("/v1/chat/completions", json=chat_request(), headers=CLIENT_HEADERS)
    assert r.status_code == 502
    assert r.headers["content-type"].startswith("text/html")
    assert r.content == page


def test_error_object_in_success_body(make_proxy):
    app, _, _ = make_proxy(
        lambda request: upstream_response(
            json_body={"error": {"message": "No endpoints found", "code": 404}}
        )
    )
    r = TestClient(app).post("/v1/chat/completions", json=chat_request(), headers=CLIENT_HEADERS)
    assert r.status_code == 404
    assert r.json()["error"]["message"] == "No endpoints found"


def test_transport_failure_is_502(make_proxy):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    app, _, _ = make_proxy(refuse)
    r = TestClient(app).post("/v1/chat/completions", json=chat_request(), headers=CLIENT_HEADERS)
    assert r.status_code == 502
    assert r.json()["error"]["type"] == "upstream_unreachable"


def test_requests_are_logged(make_proxy, proxy_config):
    app, _, _ = make_proxy(lambda request: upstream_response(json_body=completion("ok")))
    client = TestClient(app)
    client.post("/v1/chat/completions", json=chat_request(), headers=CLIENT_HEADERS)
    client.post("/v1/chat/completions", json=chat_request(model="bad"), headers=CLIENT_HEADERS)

    with open(proxy_config.log_path, encoding="utf-8") as fh:
        records = [json.loads(line) for line in fh]

    assert [r["status"] for r in records] == [200, 400]
    assert records[0]["upstream_model"] == "openai/gpt-4o"
    assert "not supported" in records[1]["error"]
