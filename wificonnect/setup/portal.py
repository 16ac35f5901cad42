"""
Captive portal server for wificonnect.

Serves the network picker to clients of the hotspot and relays their
choices to the orchestrator over the command channel. Handles Android, iOS
and Windows captive portal detection automatically.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from wificonnect.core.errors import ChannelError
from wificonnect.core.messages import Activate, Channel, Command, Connect, Response

logger = logging.getLogger(__name__)

# Paths probed by client operating systems to detect a captive portal
CAPTIVE_CHECK_PATHS = (
    "/generate_204",
    "/gen_204",
    "/hotspot-detect.html",
    "/library/test/success.html",
    "/connecttest.txt",
    "/ncsi.txt",
    "/redirect",
)


class ConnectRequest(BaseModel):
    """Credentials submitted from the portal page."""

    ssid: str = Field(min_length=1, max_length=32)
    passphrase: str = ""  # Empty passphrase allowed for open networks


@dataclass
class CaptivePortal:
    """
    Captive portal server.

    Talks to the orchestrator only through the two channel endpoints it is
    given: it sends commands and receives access point lists.
    """

    gateway: str
    commands: Channel[Command]
    responses: Channel[Response]
    ui_directory: str = "ui"
    port: int = 80
    host: str = "0.0.0.0"

    _app: FastAPI = field(default=None, init=False)  # type: ignore
    _server: uvicorn.Server | None = field(default=None, init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)

    def __post_init__(self) -> None:
        self._app = self._create_app()

    @property
    def app(self) -> FastAPI:
        return self._app

    @property
    def portal_url(self) -> str:
        if self.port == 80:
            return f"http://{self.gateway}/"
        return f"http://{self.gateway}:{self.port}/"

    def _create_app(self) -> FastAPI:
        """Create the FastAPI application."""
        app = FastAPI(
            title="WiFi Connect",
            docs_url=None,
            redoc_url=None,
        )

        @app.exception_handler(StarletteHTTPException)
        async def redirect_unknown(request: Request, exc: StarletteHTTPException):
            """Send lost browsers back to the portal page."""
            if exc.status_code == 404 and request.method == "GET":
                return RedirectResponse(url=self.portal_url, status_code=302)
            return JSONResponse(content={"detail": exc.detail}, status_code=exc.status_code)

        # ====================================================================
        # Health Check Endpoint
        # ====================================================================

        @app.get("/health")
        async def health_check() -> dict:
            return {"status": "ok", "service": "wificonnect"}

        # ====================================================================
        # Captive Portal Detection Endpoints
        # ====================================================================

        async def captive_check() -> RedirectResponse:
            return RedirectResponse(url=self.portal_url, status_code=302)

        for path in CAPTIVE_CHECK_PATHS:
            app.add_api_route(path, captive_check, methods=["GET"], include_in_schema=False)

        # ====================================================================
        # Portal API
        # ====================================================================

        @app.get("/networks")
        async def list_networks() -> JSONResponse:
            """Ask the orchestrator for the current access point list."""
            # One Activate in flight at a time, so each request gets its own answer
            async with self._lock:
                try:
                    self.commands.send(Activate())
                    response = await self.responses.receive()
                except ChannelError as e:
                    logger.error(f"Requesting access points failed: {e}")
                    raise HTTPException(status_code=503, detail="Network service unavailable")

            return JSONResponse(content={"ssids": response.ssids})

        @app.post("/connect")
        async def connect(request: ConnectRequest) -> JSONResponse:
            """Hand the submitted credentials to the orchestrator."""
            logger.info(f"Received connect request for '{request.ssid}'")
            try:
                self.commands.send(Connect(ssid=request.ssid, passphrase=request.passphrase))
            except ChannelError as e:
                logger.error(f"Sending connect command failed: {e}")
                raise HTTPException(status_code=503, detail="Network service unavailable")

            return JSONResponse(content={"success": True, "ssid": request.ssid})

        ui_path = Path(self.ui_directory)
        if ui_path.is_dir():
            app.mount("/", StaticFiles(directory=ui_path, html=True), name="ui")
        else:
            logger.debug(f"UI directory {ui_path} not found, serving built-in page")

            @app.get("/", response_class=HTMLResponse)
            async def index() -> HTMLResponse:
                return HTMLResponse(content=_BUILTIN_PAGE)

        return app

    async def serve(self) -> None:
        """Run the server until stop() is called."""
        config = uvicorn.Config(
            self._app,
            host=self.host,
            port=self.port,
            log_level="warning",
            access_log=False,
        )
        self._server = uvicorn.Server(config)

        logger.info(f"Captive portal running at {self.portal_url}")
        await self._server.serve()
        logger.info("Captive portal stopped")

    async def stop(self) -> None:
        """Ask the server to shut down."""
        if self._server:
            self._server.should_exit = True


_BUILTIN_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>WiFi Connect</title>
    <style>
        body { font-family: -apple-system, 'Segoe UI', Roboto, sans-serif; max-width: 400px; margin: 0 auto; padding: 20px; }
        select, input, button { width: 100%; padding: 12px; margin-top: 12px; font-size: 16px; box-sizing: border-box; }
        .status { margin-top: 16px; color: #555; }
    </style>
</head>
<body>
    <h1>WiFi Connect</h1>
    <p>Choose the network this device should join.</p>
    <select id="ssid"><option>Loading...</option></select>
    <input type="password" id="passphrase" placeholder="Passphrase">
    <button id="connect">Connect</button>
    <p class="status" id="status"></p>

    <script>
        const select = document.getElementById('ssid');
        const status = document.getElementById('status');

        fetch('/networks')
            .then(res => res.json())
            .then(data => {
                select.innerHTML = '';
                data.ssids.forEach(ssid => {
                    const option = document.createElement('option');
                    option.textContent = ssid;
                    select.appendChild(option);
                });
            })
            .catch(() => { status.textContent = 'Could not load networks.'; });

        document.getElementById('connect').addEventListener('click', async () => {
            const res = await fetch('/connect', {
                method: 'POST',
                headers: { 'Content-Type': 'application/json' },
                body: JSON.stringify({
                    ssid: select.value,
                    passphrase: document.getElementById('passphrase').value
                })
            });
            status.textContent = res.ok
                ? 'Connecting... This hotspot will close. If it comes back, try again.'
                : 'Request failed.';
        });
    </script>
</body>
</html>"""
