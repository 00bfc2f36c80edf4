import json

import httpx
import pytest

from backstop import AsyncApiClient, HttpxTransport, RequestDescriptor


def _descriptor(**kw):
    base = {"method": "GET", "path": "/products", "url": "https://shop.test/api/products"}
    base.update(kw)
    return RequestDescriptor(**base)


@pytest.mark.asyncio
async def test_httpx_sends_headers_body_and_params():
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content) if request.content else None
        return httpx.Response(200, json={"id": "p1"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        transport = HttpxTransport(client)
        out = await transport.send(
            _descriptor(
                method="POST",
                headers={"Authorization": "Bearer T"},
                body={"qty": 2},
                params={"currency": "NGN"},
            )
        )
    assert out.ok
    assert out.status == 200  # noqa: PLR2004
    assert out.body == {"id": "p1"}
    assert seen["method"] == "POST"
    assert seen["url"] == "https://shop.test/api/products?currency=NGN"
    assert seen["auth"] == "Bearer T"
    assert seen["body"] == {"qty": 2}


@pytest.mark.asyncio
async def test_httpx_timeout_and_connect_errors():
    def timeout_handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    def reset_handler(request):
        raise httpx.ConnectError("reset", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(timeout_handler)) as client:
        out = await HttpxTransport(client).send(_descriptor(timeout=5.0))
    assert out.timed_out
    assert out.status is None
    assert out.timeout == 5.0  # noqa: PLR2004

    async with httpx.AsyncClient(transport=httpx.MockTransport(reset_handler)) as client:
        out = await HttpxTransport(client).send(_descriptor())
    assert not out.timed_out
    assert isinstance(out.error, httpx.ConnectError)


@pytest.mark.asyncio
async def test_httpx_non_json_and_empty_bodies():
    def handler(request):
        if request.url.path.endswith("/text"):
            return httpx.Response(200, text="pong")
        return httpx.Response(204)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        transport = HttpxTransport(client)
        assert (await transport.send(_descriptor(url="https://shop.test/text"))).body == "pong"
        assert (await transport.send(_descriptor())).body is None


@pytest.mark.asyncio
async def test_client_over_httpx_end_to_end():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        if calls["n"] == 1:
            return httpx.Response(500)
        return httpx.Response(200, json={"ok": True})

    delays = []

    async def sleep(d):
        delays.append(d)

    mock = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    async with AsyncApiClient(
        "https://shop.test/api", transport=HttpxTransport(mock), sleep=sleep
    ) as client:
        resp = await client.get("/health")
    await mock.aclose()
    assert resp.data == {"ok": True}
    assert delays == [2.0]
