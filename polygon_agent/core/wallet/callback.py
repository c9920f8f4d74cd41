"""
Loopback callback listener for wait-mode approvals.

A FastAPI app served by uvicorn on 127.0.0.1 with an OS-assigned port. It
accepts exactly one sealed payload on a secret path and hands it to the
broker; everything else gets a 404.
"""

import asyncio
import json
import logging
import secrets
import socket
from typing import Callable, Dict, Optional
from urllib.parse import parse_qs

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, Response

from .handshake import b64url_encode

logger = logging.getLogger(__name__)

MAX_BODY_BYTES = 64 * 1024

SUCCESS_HTML = """<!DOCTYPE html><html><head><meta charset="utf-8"><title>Session Approved</title>
<style>body{font-family:-apple-system,system-ui,sans-serif;display:flex;align-items:center;justify-content:center;min-height:100vh;margin:0;background:#0a0a0f;color:#e5e5e5}
.card{text-align:center;padding:2rem;border-radius:1rem;background:#16161f;border:1px solid #2a2a3a;max-width:360px}
h2{margin:0 0 .5rem;font-size:1.25rem;color:#22c55e}p{margin:0;font-size:.875rem;color:#888}</style></head>
<body><div class="card"><h2>Session Approved</h2><p>You can close this tab and return to your terminal.</p></div></body></html>"""

_ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


class PayloadTooLarge(Exception):
    pass


def cors_headers(request: Request) -> Dict[str, str]:
    # The tunnel hostname is random per run, so the caller's origin is reflected
    return {
        "Access-Control-Allow-Origin": request.headers.get("origin") or "*",
        "Access-Control-Allow-Methods": "POST, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type",
        "Vary": "Origin",
    }


async def _read_capped(request: Request, limit: int) -> bytes:
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > limit:
        raise PayloadTooLarge()

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > limit:
            raise PayloadTooLarge()
    return bytes(body)


def _extract_ciphertext(request: Request, body: bytes) -> Optional[str]:
    """Raises ValueError when the body cannot be parsed at all."""
    content_type = request.headers.get("content-type", "").lower()
    text = body.decode("utf-8")
    if "application/x-www-form-urlencoded" in content_type:
        data = {k: v[0] for k, v in parse_qs(text, keep_blank_values=True).items()}
    else:
        data = json.loads(text)

    if not isinstance(data, dict):
        return None
    value = data.get("ciphertext")
    if not isinstance(value, str) or not value:
        return None
    return value


def create_callback_app(
    callback_path: str,
    deliver: Callable[[str], None],
    max_body_bytes: int = MAX_BODY_BYTES,
) -> FastAPI:
    """
    Build the callback app.

    Args:
        callback_path: The only path that accepts a payload, e.g. /callback/<token>
        deliver: Called once per accepted ciphertext
        max_body_bytes: Request bodies above this are refused with 413
    """
    app = FastAPI(openapi_url=None, docs_url=None, redoc_url=None)

    @app.api_route("/{full_path:path}", methods=_ALL_METHODS)
    async def handle(request: Request, full_path: str) -> Response:
        headers = cors_headers(request)

        if request.method == "OPTIONS":
            return Response(status_code=204, headers=headers)

        if request.method != "POST" or request.url.path != callback_path:
            return JSONResponse({"error": "Not found"}, status_code=404, headers=headers)

        try:
            body = await _read_capped(request, max_body_bytes)
        except PayloadTooLarge:
            return PlainTextResponse("Payload too large", status_code=413, headers=headers)

        try:
            ciphertext = _extract_ciphertext(request, body)
        except (UnicodeDecodeError, ValueError):
            return PlainTextResponse("Invalid request body", status_code=400, headers=headers)

        if ciphertext is None:
            return PlainTextResponse("Missing ciphertext", status_code=400, headers=headers)

        deliver(ciphertext)
        return HTMLResponse(SUCCESS_HTML, headers=headers)

    return app


class CallbackListener:
    """
    Serves the callback app until one payload arrives or close() is called.

    Usage:
        async with CallbackListener() as listener:
            ...expose listener.port...
            ciphertext = await listener.wait()
    """

    def __init__(self, host: str = "127.0.0.1", max_body_bytes: int = MAX_BODY_BYTES):
        self.host = host
        self.token = b64url_encode(secrets.token_bytes(24))
        self.callback_path = f"/callback/{self.token}"
        self.max_body_bytes = max_body_bytes
        self.port: Optional[int] = None

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._result: Optional[asyncio.Future] = None
        self._server: Optional[uvicorn.Server] = None
        self._serve_task: Optional[asyncio.Task] = None
        self._socket: Optional[socket.socket] = None

    def _deliver(self, ciphertext: str) -> None:
        def _set() -> None:
            if self._result is not None and not self._result.done():
                self._result.set_result(ciphertext)

        if self._loop is not None:
            self._loop.call_soon_threadsafe(_set)

    async def start(self) -> int:
        self._loop = asyncio.get_running_loop()
        self._result = self._loop.create_future()

        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((self.host, 0))
        self._socket = sock
        self.port = sock.getsockname()[1]

        app = create_callback_app(self.callback_path, self._deliver, self.max_body_bytes)
        config = uvicorn.Config(app, log_level="warning", access_log=False, lifespan="off")
        self._server = uvicorn.Server(config)
        self._serve_task = asyncio.create_task(self._server.serve(sockets=[sock]))

        while not self._server.started:
            if self._serve_task.done():
                # surfaces the startup exception
                self._serve_task.result()
                raise RuntimeError("Callback listener exited during startup")
            await asyncio.sleep(0.01)

        logger.info(f"Callback listener on http://{self.host}:{self.port}")
        return self.port

    @property
    def local_url(self) -> str:
        return f"http://{self.host}:{self.port}{self.callback_path}"

    async def wait(self) -> str:
        if self._result is None:
            raise RuntimeError("Listener not started")
        return await self._result

    async def close(self) -> None:
        if self._server is not None:
            self._server.should_exit = True
        if self._serve_task is not None:
            try:
                await self._serve_task
            finally:
                self._serve_task = None
        if self._socket is not None:
            self._socket.close()
            self._socket = None
        if self._result is not None and not self._result.done():
            self._result.cancel()
        self._server = None

    async def __aenter__(self) -> "CallbackListener":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
