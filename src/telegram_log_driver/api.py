"""Docker plugin protocol served over the plugin's unix socket."""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, Request, Response
from pydantic import BaseModel, ConfigDict, Field

from .config import Config
from .driver import LogDriver
from .logging import get_logger
from .metrics import METRICS_CONTENT_TYPE, latest_metrics
from .options import ConfigError, ContainerDetails


class ContainerInfo(BaseModel):
    """``Info`` object sent with ``StartLogging``."""

    model_config = ConfigDict(populate_by_name=True)

    config: Optional[Dict[str, str]] = Field(default=None, alias="Config")
    container_id: str = Field(default="", alias="ContainerID")
    container_name: str = Field(default="", alias="ContainerName")
    container_entrypoint: str = Field(default="", alias="ContainerEntrypoint")
    container_args: Optional[List[str]] = Field(default=None, alias="ContainerArgs")
    container_image_id: str = Field(default="", alias="ContainerImageID")
    container_image_name: str = Field(default="", alias="ContainerImageName")
    container_created: Optional[str] = Field(default=None, alias="ContainerCreated")
    container_env: Optional[List[str]] = Field(default=None, alias="ContainerEnv")
    container_labels: Optional[Dict[str, str]] = Field(default=None, alias="ContainerLabels")
    log_path: str = Field(default="", alias="LogPath")
    daemon_name: str = Field(default="", alias="DaemonName")

    def to_details(self) -> ContainerDetails:
        return ContainerDetails(
            config=dict(self.config or {}),
            container_id=self.container_id,
            container_name=self.container_name,
            container_entrypoint=self.container_entrypoint,
            container_args=tuple(self.container_args or ()),
            container_image_id=self.container_image_id,
            container_image_name=self.container_image_name,
            container_created=self.container_created,
            container_env=tuple(self.container_env or ()),
            container_labels=dict(self.container_labels or {}),
            log_path=self.log_path,
            daemon_name=self.daemon_name,
        )


class StartLoggingRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file: str = Field(alias="File")
    info: ContainerInfo = Field(default_factory=ContainerInfo, alias="Info")


class StopLoggingRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file: str = Field(alias="File")


def create_app(driver: LogDriver) -> FastAPI:
    """Create the FastAPI application answering the daemon's plugin calls."""

    logger = get_logger("telegram.api")
    app = FastAPI(
        title="Telegram Log Driver",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    @app.middleware("http")
    async def _log_requests(request: Request, call_next):  # type: ignore[no-untyped-def]
        started = time.perf_counter()
        response = await call_next(request)
        logger.debug(
            "Plugin request handled",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        return response

    @app.post("/Plugin.Activate")
    async def activate() -> Dict[str, Any]:
        return {"Implements": ["LogDriver"]}

    @app.post("/LogDriver.StartLogging")
    async def start_logging(payload: StartLoggingRequest) -> Dict[str, str]:
        details = payload.info.to_details()
        try:
            await driver.start_logging(payload.file, details)
        except ConfigError as exc:
            logger.error(
                "Rejected log options",
                extra={"container_id": details.short_id, "option": exc.option, "error": str(exc)},
            )
            return {"Err": str(exc)}
        except ValueError as exc:
            logger.error("StartLogging failed", extra={"file": payload.file, "error": str(exc)})
            return {"Err": str(exc)}
        return {"Err": ""}

    @app.post("/LogDriver.StopLogging")
    async def stop_logging(payload: StopLoggingRequest) -> Dict[str, str]:
        await driver.stop_logging(payload.file)
        return {"Err": ""}

    @app.post("/LogDriver.Capabilities")
    async def capabilities() -> Dict[str, Any]:
        return {"Cap": {"ReadLogs": False}}

    @app.get("/metrics")
    async def metrics() -> Response:
        return Response(content=latest_metrics(), media_type=METRICS_CONTENT_TYPE)

    return app


class ApiService:
    """Lifecycle wrapper for the uvicorn server bound to the plugin socket."""

    def __init__(self, config: Config, driver: LogDriver) -> None:
        self.config = config
        self.driver = driver
        self.logger = get_logger("telegram.api")
        self._server: Optional[uvicorn.Server] = None
        self._server_task: Optional["asyncio.Task[None]"] = None

    async def start(self) -> None:
        if self._server:
            return
        socket_path = Path(self.config.socket_path)
        socket_path.parent.mkdir(parents=True, exist_ok=True)
        if socket_path.exists():
            socket_path.unlink()
        app = create_app(self.driver)
        uvicorn_config = uvicorn.Config(
            app,
            uds=str(socket_path),
            log_config=None,
            loop="asyncio",
        )
        self._server = uvicorn.Server(config=uvicorn_config)
        self._server_task = asyncio.create_task(self._server.serve())
        self.logger.info("Plugin API starting", extra={"socket_path": str(socket_path)})

    async def stop(self) -> None:
        if not self._server:
            return
        self.logger.info("Stopping plugin API")
        self._server.should_exit = True
        if self._server_task:
            await self._server_task
        self._server = None
        self._server_task = None
