"""Node sessions over a persistent JSON-RPC connection.

:func:`connect` opens a :class:`Session` and suspends until the transport is
ready. ``ws://`` and ``wss://`` endpoints run on :mod:`websockets` with
responses correlated to requests by JSON-RPC id; ``http://`` and
``https://`` endpoints run on :mod:`httpx`. There is no retry: a failed open
or a dropped connection raises :class:`ConnectionFailedError`.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any, Awaitable, Callable
from urllib.parse import urlsplit

import httpx
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from inkprobe.errors import ConnectionFailedError, RequestTimeoutError, ResponseDecodeError, RpcError
from inkprobe.types import NodeInfo, SessionState

log = logging.getLogger(__name__)

Opener = Callable[[str, float], Awaitable[Any]]

_WS_SCHEMES = ("ws", "wss")
_HTTP_SCHEMES = ("http", "https")


async def _open_websocket(url: str, open_timeout: float) -> Any:
    return await websockets.connect(url, open_timeout=open_timeout, max_size=None)


# ---------------------------------------------------------------------------
# Transports
# ---------------------------------------------------------------------------


class _WebSocketTransport:
    """Request/response correlation on top of a websocket connection.

    The connection object needs ``send``, ``recv`` and ``close`` coroutines;
    a single reader task resolves pending futures by response id.
    """

    def __init__(self, url: str, ws: Any) -> None:
        self._url = url
        self._ws = ws
        self._pending: dict[int, asyncio.Future[dict[str, Any]]] = {}
        self._failure: ConnectionFailedError | None = None
        self._reader = asyncio.create_task(self._read_loop(), name="inkprobe.ws-reader")

    async def call(self, payload: dict[str, Any]) -> dict[str, Any]:
        if self._failure is not None:
            raise self._failure
        req_id = payload["id"]
        fut: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[req_id] = fut
        try:
            try:
                await self._ws.send(json.dumps(payload))
            except (ConnectionClosed, OSError) as exc:
                raise ConnectionFailedError(f"connection to {self._url} lost: {exc}") from exc
            return await fut
        finally:
            self._pending.pop(req_id, None)

    async def _read_loop(self) -> None:
        try:
            while True:
                frame = await self._ws.recv()
                try:
                    data = json.loads(frame)
                except ValueError:
                    log.warning("ignoring non-JSON frame from %s", self._url)
                    continue
                if not isinstance(data, dict) or not isinstance(data.get("id"), int):
                    # Subscription notifications carry no id; request ids are ints.
                    continue
                fut = self._pending.get(data["id"])
                if fut is not None and not fut.done():
                    fut.set_result(data)
        except (ConnectionClosed, OSError, EOFError) as exc:
            self._fail(ConnectionFailedError(f"connection to {self._url} lost: {exc}"))
        except Exception as exc:
            log.warning("reader for %s stopped: %s", self._url, exc)
            self._fail(ConnectionFailedError(f"connection to {self._url} failed: {exc}"))

    def _fail(self, error: ConnectionFailedError) -> None:
        self._failure = error
        for fut in self._pending.values():
            if not fut.done():
                fut.set_exception(error)

    async def aclose(self) -> None:
        self._reader.cancel()
        with contextlib.suppress(asyncio.CancelledError, Exception):
            await self._reader
        self._fail(ConnectionFailedError(f"session to {self._url} closed"))
        await self._ws.close()


class _HttpTransport:
    """One POST per request; the connection pool is the persistent part."""

    def __init__(self, url: str, client: httpx.AsyncClient) -> None:
        self._url = url
        self._client = client

    async def call(self, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            resp = await self._client.post("", json=payload)
            resp.raise_for_status()
        except httpx.TransportError as exc:
            raise ConnectionFailedError(f"cannot reach {self._url}: {exc}") from exc
        except httpx.HTTPStatusError as exc:
            raise ConnectionFailedError(
                f"{self._url} answered HTTP {exc.response.status_code}"
            ) from exc
        try:
            return resp.json()
        except ValueError as exc:
            raise ConnectionFailedError(f"{self._url} returned a non-JSON body") from exc

    async def aclose(self) -> None:
        await self._client.aclose()


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class Session:
    """A connection to one node endpoint.

    Args:
        url: Endpoint URL (``ws``, ``wss``, ``http`` or ``https``).
        open_timeout: Seconds to wait for the transport to become ready.
        request_timeout: Optional per-request deadline in seconds. ``None``
            waits for as long as the transport stays up.

    Example::

        async with await connect("ws://127.0.0.1:9944") as session:
            info = await session.node_info()
    """

    def __init__(
        self,
        url: str,
        *,
        open_timeout: float = 15.0,
        request_timeout: float | None = None,
    ) -> None:
        self._url = url
        self._open_timeout = open_timeout
        self._request_timeout = request_timeout
        self._request_id = 0
        self._transport: _WebSocketTransport | _HttpTransport | None = None
        self.state = SessionState.CONNECTING

    def __repr__(self) -> str:
        return f"Session(url={self._url!r}, state={self.state.value})"

    @property
    def url(self) -> str:
        return self._url

    # ----- lifecycle -------------------------------------------------------

    async def open(
        self,
        *,
        opener: Opener | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> "Session":
        """Open the transport and wait until it is ready.

        Raises:
            ConnectionFailedError: On an unsupported scheme, an unreachable
                host, a rejected handshake or an open timeout.
        """
        scheme = urlsplit(self._url).scheme.lower()
        if scheme in _WS_SCHEMES:
            opener = opener or _open_websocket
            try:
                ws = await asyncio.wait_for(opener(self._url, self._open_timeout), self._open_timeout)
            except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
                self.state = SessionState.CLOSED
                raise ConnectionFailedError(f"cannot connect to {self._url}: {exc}") from exc
            self._transport = _WebSocketTransport(self._url, ws)
        elif scheme in _HTTP_SCHEMES:
            client = httpx.AsyncClient(
                base_url=self._url,
                # Reads are bounded by request_timeout in request(), not by httpx.
                timeout=httpx.Timeout(None, connect=self._open_timeout),
                transport=http_transport,
            )
            self._transport = _HttpTransport(self._url, client)
            try:
                await self.request("system_health")
            except (ConnectionFailedError, RequestTimeoutError, ResponseDecodeError, RpcError) as exc:
                await self.close()
                raise ConnectionFailedError(f"cannot connect to {self._url}: {exc}") from exc
        else:
            self.state = SessionState.CLOSED
            raise ConnectionFailedError(f"unsupported endpoint scheme {scheme!r} in {self._url}")

        self.state = SessionState.READY
        log.info("connected to %s", self._url)
        return self

    async def close(self) -> None:
        """Release the transport. Safe to call more than once."""
        transport, self._transport = self._transport, None
        self.state = SessionState.CLOSED
        if transport is not None:
            await transport.aclose()
            log.info("closed session to %s", self._url)

    async def __aenter__(self) -> "Session":
        if self.state is SessionState.CONNECTING:
            await self.open()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ----- requests --------------------------------------------------------

    def _next_id(self) -> int:
        self._request_id += 1
        return self._request_id

    async def request(self, method: str, params: list[Any] | None = None) -> Any:
        """Send a JSON-RPC 2.0 request and return its ``result``.

        Raises:
            ConnectionFailedError: If the session is not usable or the
                transport drops; the session is closed in the latter case.
            RequestTimeoutError: If ``request_timeout`` elapses first.
            RpcError: If the node answers with an error object.
            ResponseDecodeError: If the reply is not a JSON-RPC object.
        """
        transport = self._transport
        if transport is None:
            raise ConnectionFailedError(f"session to {self._url} is {self.state.value}")
        payload = {"jsonrpc": "2.0", "id": self._next_id(), "method": method, "params": params or []}
        log.debug("-> %s %s", method, payload["params"])
        try:
            if self._request_timeout is None:
                body = await transport.call(payload)
            else:
                body = await asyncio.wait_for(transport.call(payload), self._request_timeout)
        except asyncio.TimeoutError as exc:
            raise RequestTimeoutError(
                f"{method} to {self._url} timed out after {self._request_timeout}s"
            ) from exc
        except ConnectionFailedError:
            await self.close()
            raise
        log.debug("<- %s %s", method, body)

        if not isinstance(body, dict):
            raise ResponseDecodeError(f"{method}: expected a JSON-RPC object, got {body!r}")
        if body.get("error") is not None:
            err = body["error"]
            if not isinstance(err, dict):
                raise RpcError(code=-1, message=str(err))
            raise RpcError(
                code=err.get("code", -1),
                message=err.get("message", "unknown error"),
                data=err.get("data"),
            )
        return body.get("result")

    async def node_info(self) -> NodeInfo:
        """Fetch chain name, node implementation and version concurrently."""
        chain, implementation, version = await asyncio.gather(
            self.request("system_chain"),
            self.request("system_name"),
            self.request("system_version"),
        )
        return NodeInfo(chain=str(chain), implementation=str(implementation), version=str(version))


async def connect(
    url: str,
    *,
    open_timeout: float = 15.0,
    request_timeout: float | None = None,
    opener: Opener | None = None,
    http_transport: httpx.AsyncBaseTransport | None = None,
) -> Session:
    """Open a :class:`Session` to *url* and return it once ready."""
    session = Session(url, open_timeout=open_timeout, request_timeout=request_timeout)
    return await session.open(opener=opener, http_transport=http_transport)
