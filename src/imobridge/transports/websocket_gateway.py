"""
WebSocket broadcast server for browser extensions and other local clients.

Every debounced publish is serialized once and pushed verbatim to each open
connection. The only inbound payload that is interpreted is the liveness
probe ``?``, answered with ``!``. The last client leaving arms the idle
shutdown timer; any new client disarms it. Upgrades are accepted on any
request path.
"""

from __future__ import annotations

import asyncio
import logging
import os
import socket
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState

from ..core.config import BridgeSettings
from ..core.contracts import BridgeContext, StatusRecord
from ..exceptions import TransportError
from .activation import SocketFactory, activated_socket

logger = logging.getLogger(__name__)

PROBE_REQUEST = "?"
PROBE_RESPONSE = "!"

ListenFactory = Callable[[tuple[str, int]], socket.socket]


def _listen(address: tuple[str, int]) -> socket.socket:
    return socket.create_server(address)


@dataclass(slots=True, eq=False)
class ClientConnection:
    websocket: WebSocket
    alive: bool = True

    @property
    def is_open(self) -> bool:
        return (
            self.alive
            and self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )


class WebsocketGateway:
    """Broadcast status records to WebSocket subscribers."""

    name = "websocket"

    def __init__(
        self,
        settings: BridgeSettings | None = None,
        *,
        config_factory: Callable[..., uvicorn.Config] | None = None,
        server_factory: Callable[[uvicorn.Config], uvicorn.Server] | None = None,
        listen_factory: ListenFactory | None = None,
        environ: Mapping[str, str] | None = None,
        activation_factory: SocketFactory | None = None,
    ) -> None:
        settings = settings or BridgeSettings()
        self._host = settings.websocket.host
        self._port = settings.port
        self._serve_http = settings.websocket.serve_http
        self._verbose = settings.verbose
        self._clients: set[ClientConnection] = set()
        self._context: BridgeContext | None = None
        self._app: FastAPI | None = None
        self._config_factory = config_factory or uvicorn.Config
        self._server_factory = server_factory or uvicorn.Server
        self._listen_factory = listen_factory or _listen
        self._environ = environ
        self._activation_factory = activation_factory
        self._server: uvicorn.Server | None = None
        self._server_task: asyncio.Task[None] | None = None
        self._stopping = False

    @property
    def app(self) -> FastAPI:
        if self._app is None:
            raise RuntimeError("WebsocketGateway has not been started.")
        return self._app

    @property
    def client_count(self) -> int:
        return len(self._clients)

    @property
    def context(self) -> BridgeContext:
        if self._context is None:
            raise RuntimeError("WebsocketGateway has not been started.")
        return self._context

    async def start(self, context: BridgeContext) -> None:
        self._context = context
        self._stopping = False
        self._app = self._build_app()
        if not self._serve_http:
            logger.info("WebsocketGateway running in embedded mode (no HTTP server).")
            return

        sock = activated_socket(self._environ, socket_factory=self._activation_factory)
        if sock is None:
            try:
                sock = self._listen_factory((self._host, self._port))
            except OSError as exc:
                raise TransportError(f"cannot listen on {self._host}:{self._port}: {exc}") from exc
            logger.info(
                "WebsocketGateway listening on ws://%s:%s/", self._host, self._port
            )

        config = self._config_factory(
            app=self._app,
            loop="asyncio",
            lifespan="off",
            log_config=None,
            log_level="info" if self._verbose else "warning",
        )
        self._server = self._server_factory(config)
        self._server_task = asyncio.create_task(
            self._server.serve(sockets=[sock]), name="imobridge-websocket"
        )
        self._server_task.add_done_callback(self._on_server_done)
        logger.info("waiting WebSocket connection on process #%d...", os.getpid())

    async def stop(self) -> None:
        self._stopping = True
        if self._server_task:
            self._server.should_exit = True  # type: ignore[union-attr]
            done, _pending = await asyncio.wait([self._server_task], timeout=2)
            if not done:
                logger.warning("WebSocket server did not stop in time; cancelling.")
                self._server_task.cancel()
            self._server_task = None
        self._server = None
        self._app = None
        for client in self._clients:
            client.alive = False
        self._clients.clear()

    async def broadcast(self, state: StatusRecord) -> None:
        clients = [client for client in self._clients if client.is_open]
        if not clients:
            return
        message = state.to_json()
        logger.debug("sending data to %d clients", len(clients))
        results = await asyncio.gather(
            *(client.websocket.send_text(message) for client in clients),
            return_exceptions=True,
        )
        for client, result in zip(clients, results, strict=True):
            if isinstance(result, Exception):
                logger.warning("Failed to send status to %s: %s", _peer(client.websocket), result)

    def _build_app(self) -> FastAPI:
        app = FastAPI(title="Input Method Observer", version="0.1.0")

        @app.get("/health")
        async def health() -> dict[str, Any]:
            return {
                "status": "ok",
                "clients": len(self._clients),
                "state": self.context.aggregator.snapshot.to_wire(),
            }

        @app.websocket("/{subpath:path}")
        async def websocket_endpoint(websocket: WebSocket, subpath: str) -> None:
            await websocket.accept()
            await self._serve_client(websocket)

        return app

    def add_client(self, websocket: WebSocket) -> ClientConnection:
        """Register an accepted connection and disarm the idle shutdown."""
        client = ClientConnection(websocket=websocket)
        self._clients.add(client)
        self.context.publisher.cancel_shutdown()
        logger.debug("connected from %s", _peer(websocket))
        return client

    def remove_client(self, client: ClientConnection) -> None:
        """Forget a closed connection; the last one out arms the idle shutdown."""
        client.alive = False
        self._clients.discard(client)
        logger.debug("closed")
        if not self._clients and not self._stopping:
            logger.debug("there are no websocket clients")
            self.context.publisher.schedule_shutdown()

    async def _serve_client(self, websocket: WebSocket) -> None:
        client = self.add_client(websocket)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                data = message.get("text")
                if data is None:
                    data = (message.get("bytes") or b"").decode("utf-8", errors="replace")
                if data == PROBE_REQUEST:
                    await websocket.send_text(PROBE_RESPONSE)
                    continue
                logger.debug("received: %s", data)
        except WebSocketDisconnect:
            logger.debug("Websocket client %s disconnected.", _peer(websocket))
        except Exception:
            logger.exception("Websocket client %s failed", _peer(websocket))
        finally:
            self.remove_client(client)

    def _on_server_done(self, task: asyncio.Task[None]) -> None:
        if self._stopping or task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("WebSocket server failed", exc_info=exc)
            self.context.request_exit(1)
        else:
            logger.info("WebSocket server exited.")
            self.context.request_exit(0)


def _peer(websocket: WebSocket) -> str:
    client = websocket.client
    return f"{client.host}:{client.port}" if client else "unknown"


__all__ = ["ClientConnection", "WebsocketGateway"]
