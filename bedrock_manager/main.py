# SPDX-License-Identifier: GPL-3.0-only
# SPDX-FileCopyrightText: Copyright (c) 2026 The Bedrock Manager Authors

"""
Bedrock Manager Main Application

FastAPI application exposing server control, update, world and pack
management as a JSON API.
"""

import logging
import os
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Dict, Optional, Sequence

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .config import (
    CONFIG_ENV_VAR,
    DEFAULT_CONFIG_FILE,
    Config,
    cli_layer,
    load_config,
    parse_args,
    setup_logging,
)
from .packs import CATEGORIES, PACK_EXTENSIONS
from .properties import validate_world_name
from .schemas import (
    ActivateWorldRequest,
    HealthResponse,
    OperationResult,
    PropertiesResponse,
    PropertyValue,
    SettingsUpdateRequest,
    StatusResponse,
    WorldsResponse,
)
from .service import ServerService

logger = logging.getLogger(__name__)

UPLOAD_CHUNK_SIZE = 1024 * 1024


# =============================================================================
# APPLICATION SETUP
# =============================================================================

def create_app(config: Optional[Config] = None, config_path: Optional[Path] = None) -> FastAPI:
    """Build the API. Without a config, one is loaded on startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler for startup and shutdown."""
        logger.info("Bedrock Manager starting up...")
        cfg, path = config, config_path
        if cfg is None:
            path = path or Path(os.environ.get(CONFIG_ENV_VAR, DEFAULT_CONFIG_FILE))
            cfg = load_config(str(path))
            setup_logging(cfg.logging)
        service = ServerService(cfg, config_path=path)
        app.state.service = service
        await service.startup()
        logger.info("Bedrock Manager ready")

        yield

        logger.info("Bedrock Manager shutting down...")
        await service.shutdown()
        app.state.service = None
        logger.info("Bedrock Manager shutdown complete")

    app = FastAPI(
        title="Bedrock Manager",
        description="Install, update and supervise a Minecraft Bedrock dedicated server",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.service = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_error_handlers(app)
    _register_routes(app)
    return app


def get_service(request: Request) -> ServerService:
    service = getattr(request.app.state, "service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return service


# =============================================================================
# ERROR HANDLERS
# =============================================================================

def _register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        return JSONResponse(status_code=400, content={"error": message})

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.exception("Unexpected error: %s", exc)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})


# =============================================================================
# ENDPOINTS
# =============================================================================

def _register_routes(app: FastAPI) -> None:

    @app.get("/health", response_model=HealthResponse, response_model_by_alias=True)
    async def health_check(request: Request):
        service = getattr(request.app.state, "service", None)
        if service is None:
            return HealthResponse(status="starting", version=__version__)
        return HealthResponse(
            status="ok",
            version=__version__,
            installed_version=service.version_store.read(),
            server_running=await service.is_running(),
            update_in_progress=service.orchestrator.in_progress,
        )

    @app.get("/api/status", response_model=StatusResponse)
    async def server_status(service: ServerService = Depends(get_service)):
        try:
            running = await service.is_running()
        except Exception as e:
            logger.error("Error getting server status: %s", e)
            raise HTTPException(status_code=500, detail="Failed to get server status")
        return StatusResponse(status="running" if running else "stopped")

    @app.post("/api/start")
    async def start_server(service: ServerService = Depends(get_service)):
        try:
            await service.start()
        except Exception as e:
            logger.error("Error starting server: %s", e)
            raise HTTPException(status_code=500, detail="Failed to start server")
        return {"success": True, "message": "Server start initiated."}

    @app.post("/api/stop")
    async def stop_server(service: ServerService = Depends(get_service)):
        try:
            await service.stop()
        except Exception as e:
            logger.error("Error stopping server: %s", e)
            raise HTTPException(status_code=500, detail="Failed to stop server")
        return {"success": True, "message": "Server stop initiated."}

    @app.post("/api/restart")
    async def restart_server(service: ServerService = Depends(get_service)):
        try:
            await service.restart()
        except Exception as e:
            logger.error("Error restarting server: %s", e)
            raise HTTPException(status_code=500, detail="Failed to restart server")
        return {"success": True, "message": "Server restart initiated."}

    @app.post("/api/update", response_model=OperationResult)
    async def update_server(service: ServerService = Depends(get_service)):
        return await service.check_and_install()

    @app.get("/api/properties", response_model=PropertiesResponse)
    async def get_properties(service: ServerService = Depends(get_service)):
        try:
            return PropertiesResponse(properties=service.read_properties())
        except Exception as e:
            logger.error("Error reading server properties: %s", e)
            raise HTTPException(status_code=500, detail="Failed to read server properties")

    @app.post("/api/properties")
    async def set_properties(
        values: Dict[str, PropertyValue],
        service: ServerService = Depends(get_service),
    ):
        for key in values:
            if "\n" in key or "\r" in key or "=" in key or not key.strip() or key.strip().startswith("#"):
                raise HTTPException(status_code=400, detail=f"Invalid character in server property key: {key}")
        try:
            service.write_properties(values)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except Exception as e:
            logger.error("Error writing server properties: %s", e)
            raise HTTPException(status_code=500, detail="Failed to write server properties")
        return {
            "success": True,
            "message": "Server properties updated. Restart server for changes to take effect.",
        }

    @app.get("/api/worlds", response_model=WorldsResponse)
    async def list_worlds(service: ServerService = Depends(get_service)):
        try:
            return WorldsResponse(worlds=service.list_worlds())
        except Exception as e:
            logger.error("Error listing worlds: %s", e)
            raise HTTPException(status_code=500, detail="Failed to list worlds")

    @app.post("/api/activate-world")
    async def activate_world(
        body: ActivateWorldRequest,
        service: ServerService = Depends(get_service),
    ):
        if not validate_world_name(body.world_name):
            raise HTTPException(
                status_code=400,
                detail="Invalid worldName format. Avoid ., /, \\ and ensure it matches allowed pattern.",
            )
        if await service.activate_world(body.world_name):
            return {"message": f"World '{body.world_name}' activated."}
        raise HTTPException(status_code=400, detail=f"Failed to activate world '{body.world_name}'.")

    @app.get("/api/config")
    async def get_settings(service: ServerService = Depends(get_service)):
        return {"success": True, "config": service.config.model_dump(mode="json")}

    @app.post("/api/config")
    async def set_settings(
        body: SettingsUpdateRequest,
        service: ServerService = Depends(get_service),
    ):
        try:
            await service.update_settings(body)
        except Exception as e:
            logger.error("Error setting global config: %s", e)
            raise HTTPException(status_code=500, detail="Failed to set global config")
        return {"success": True, "message": "Global config settings updated successfully."}

    @app.post("/api/upload-pack")
    async def upload_pack(
        pack_file: Optional[UploadFile] = File(default=None, alias="packFile"),
        pack_type: Optional[str] = Form(default=None, alias="packType"),
        world_name: Optional[str] = Form(default=None, alias="worldName"),
        service: ServerService = Depends(get_service),
    ):
        def reject(message: str, status_code: int = 400) -> JSONResponse:
            return JSONResponse(status_code=status_code, content={"success": False, "message": message})

        if pack_file is None or not pack_file.filename:
            return reject("No pack file uploaded.")
        filename = Path(pack_file.filename).name
        if not filename.lower().endswith(PACK_EXTENSIONS):
            return reject("Invalid file type. Only .mcpack and .mcaddon files are allowed.")
        if not pack_type:
            return reject("Pack type is required.")
        if not world_name:
            return reject("World name is required.")
        if pack_type not in CATEGORIES:
            return reject("Invalid pack type specified.")
        if not validate_world_name(world_name):
            return reject("Invalid worldName format for pack upload.")
        if world_name not in service.list_worlds():
            return reject(f"Target world '{world_name}' does not exist.")

        upload_dir = service.config.ui.upload_directory
        upload_dir.mkdir(parents=True, exist_ok=True)
        staged = upload_dir / f"{uuid.uuid4().hex}-{filename}"
        limit = service.config.ui.max_upload_mb * 1024 * 1024

        try:
            size = 0
            with open(staged, "wb") as out:
                while True:
                    chunk = await pack_file.read(UPLOAD_CHUNK_SIZE)
                    if not chunk:
                        break
                    size += len(chunk)
                    if size > limit:
                        break
                    out.write(chunk)
            if size > limit:
                staged.unlink(missing_ok=True)
                return reject(f"Upload error: File too large (limit {service.config.ui.max_upload_mb} MB)")
        except OSError as e:
            staged.unlink(missing_ok=True)
            logger.error("Error staging pack upload: %s", e)
            return reject("Failed to upload pack due to server error.", status_code=500)
        finally:
            await pack_file.close()

        logger.info(
            "Processing pack upload: File=%s, OriginalName=%s, Type=%s, World=%s",
            staged, filename, pack_type, world_name,
        )
        result = await service.upload_pack(staged, filename, pack_type, world_name)
        if not result.success:
            return reject(result.message)
        return {"success": True, "message": result.message}


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

app = create_app()


def main(argv: Optional[Sequence[str]] = None) -> None:
    import uvicorn

    args = parse_args(argv)
    config_path = Path(args.config or os.environ.get(CONFIG_ENV_VAR, DEFAULT_CONFIG_FILE))
    config = load_config(str(config_path), overrides=cli_layer(args))
    setup_logging(config.logging)

    uvicorn.run(
        create_app(config, config_path=config_path),
        host=config.ui.host,
        port=config.ui.port,
        log_level="critical" if config.logging.level == "FATAL" else config.logging.level.lower(),
    )


if __name__ == "__main__":
    main()
