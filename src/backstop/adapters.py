import asyncio
import contextlib
import inspect
import json
import time
from typing import Any, Union

from .types import Outcome, RequestDescriptor


def decode_body(raw: Union[bytes, str, None]) -> Any:
    """JSON when the payload parses, text otherwise, None when empty."""
    if raw is None:
        return None
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    if not text.strip():
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


def _request_kwargs(descriptor: RequestDescriptor) -> dict[str, Any]:
    kwargs: dict[str, Any] = {"headers": dict(descriptor.headers)}
    if descriptor.body is not None:
        kwargs["json"] = descriptor.body
    if descriptor.params:
        kwargs["params"] = dict(descriptor.params)
    return kwargs


# ---------- httpx (async, default) ----------
class HttpxTransport:
    def __init__(self, client=None):
        self.client = client
        self._own_client = client is None

    async def send(self, descriptor: RequestDescriptor) -> Outcome:
        import httpx  # noqa: PLC0415

        if self.client is None:
            self.client = httpx.AsyncClient()
        start = time.monotonic()
        try:
            resp = await self.client.request(
                descriptor.method,
                descriptor.target,
                timeout=descriptor.timeout,
                **_request_kwargs(descriptor),
            )
        except httpx.TimeoutException as e:
            return Outcome(
                error=e,
                timed_out=True,
                elapsed=time.monotonic() - start,
                timeout=descriptor.timeout,
            )
        except httpx.TransportError as e:
            return Outcome(error=e, elapsed=time.monotonic() - start, timeout=descriptor.timeout)
        return Outcome(
            status=resp.status_code,
            headers=dict(resp.headers),
            body=decode_body(resp.content),
            elapsed=time.monotonic() - start,
            timeout=descriptor.timeout,
        )

    async def aclose(self):
        if self._own_client and self.client is not None:
            with contextlib.suppress(Exception):
                await self.client.aclose()
            self.client = None


# ---------- aiohttp (async) ----------
class AiohttpTransport:
    def __init__(self, session=None):
        self.session = session
        self._own_session = session is None

    async def send(self, descriptor: RequestDescriptor) -> Outcome:
        import aiohttp  # noqa: PLC0415

        if self.session is None:
            self.session = aiohttp.ClientSession()
        start = time.monotonic()
        resp = None
        try:
            resp = await self.session.request(
                descriptor.method,
                descriptor.target,
                timeout=aiohttp.ClientTimeout(total=descriptor.timeout),
                **_request_kwargs(descriptor),
            )
            raw = await resp.read()
        except asyncio.TimeoutError as e:
            return Outcome(
                error=e,
                timed_out=True,
                elapsed=time.monotonic() - start,
                timeout=descriptor.timeout,
            )
        except aiohttp.ClientError as e:
            return Outcome(error=e, elapsed=time.monotonic() - start, timeout=descriptor.timeout)
        finally:
            # Ensure response is released back to the connector
            if resp is not None:
                with contextlib.suppress(Exception):
                    released = resp.release()
                    if inspect.isawaitable(released):
                        await released
        return Outcome(
            status=resp.status,
            headers=dict(getattr(resp, "headers", {}) or {}),
            body=decode_body(raw),
            elapsed=time.monotonic() - start,
            timeout=descriptor.timeout,
        )

    async def aclose(self):
        if self._own_session and self.session is not None:
            await self.session.close()
            self.session = None


# ---------- requests (sync) ----------
class RequestsTransport:
    def __init__(self, session=None):
        self.session = session
        self._own_session = session is None

    def send(self, descriptor: RequestDescriptor) -> Outcome:
        import requests  # noqa: PLC0415

        if self.session is None:
            self.session = requests.Session()
        start = time.monotonic()
        try:
            resp = self.session.request(
                descriptor.method,
                descriptor.target,
                timeout=descriptor.timeout,
                **_request_kwargs(descriptor),
            )
        except requests.Timeout as e:
            return Outcome(
                error=e,
                timed_out=True,
                elapsed=time.monotonic() - start,
                timeout=descriptor.timeout,
            )
        except requests.RequestException as e:
            return Outcome(error=e, elapsed=time.monotonic() - start, timeout=descriptor.timeout)
        return Outcome(
            status=resp.status_code,
            headers=dict(resp.headers),
            body=decode_body(resp.content),
            elapsed=time.monotonic() - start,
            timeout=descriptor.timeout,
        )

    def close(self):
        if self._own_session and self.session is not None:
            with contextlib.suppress(Exception):
                self.session.close()
            self.session = None
