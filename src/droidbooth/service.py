"""FastAPI control surface standing in for the booth's buttons and joystick."""

from __future__ import annotations

import json
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Annotated, Any, Awaitable, Callable, Iterable, TypeVar

from fastapi import Depends, FastAPI, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .adb import ADBClient, ADBError
from .config import Settings, load_settings
from .logbook import LogBook
from .orchestrator import CameraOrchestrator, DeviceLocked, DeviceNotInteractive
from .probe import ProbeFailure
from .session import DeviceUnavailable

SERVICE_NAME = "droidbooth"
CONFIG_ENV_VAR = "DROIDBOOTH_CONFIG_PATH"
CONFIG_SEARCH_PATHS_ENV_VAR = "DROIDBOOTH_CONFIG_SEARCH_PATHS"
DEFAULT_CONFIG_FILENAME = "config.yaml"
API_TOKEN_ENV_VAR = "DROIDBOOTH_API_TOKEN"  # noqa: S105 - env var name, not a secret
LOG_LEVEL_ENV_VAR = "DROIDBOOTH_LOG_LEVEL"
DEFAULT_CONFIG_SEARCH_PATHS: tuple[Path, ...] = (
    Path("config.yaml"),
    Path("config/config.yaml"),
    Path(__file__).resolve().parent / DEFAULT_CONFIG_FILENAME,
)

logger = logging.getLogger(f"{SERVICE_NAME}.api")
auth_scheme = HTTPBearer(auto_error=False)
AuthCredentials = Annotated[HTTPAuthorizationCredentials | None, Security(auth_scheme)]

T = TypeVar("T")


def create_app(
    *,
    config_path: str | None = None,
    adb_client: ADBClient | None = None,
    api_token: str | None = None,
    config_search_paths: Iterable[str | os.PathLike[str]] | None = None,
    orchestrator_options: dict[str, Any] | None = None,
) -> FastAPI:
    """Instantiate the FastAPI application."""

    log_level = _configure_logging()

    state: dict[str, Any] = {
        "settings": None,
        "orchestrator": None,
        "config_path": config_path,
        "api_token": api_token or os.getenv(API_TOKEN_ENV_VAR),
        "config_search_paths": tuple(config_search_paths or ()),
    }

    def _adb_factory(settings: Settings) -> ADBClient:
        if adb_client is not None:
            return adb_client
        return ADBClient(folder=settings.bridge.folder, command_timeout=settings.bridge.command_timeout)

    @asynccontextmanager
    async def _lifespan(app: FastAPI):  # pragma: no cover - exercised via tests
        resolved_path = _resolve_config_path(state["config_path"], state["config_search_paths"])
        try:
            settings = load_settings(resolved_path)
        except Exception:
            _log_event("config.load_failed", path=str(resolved_path))
            raise

        state["settings"] = settings
        state["config_path"] = str(resolved_path)
        options: dict[str, Any] = {"logbook": LogBook(level=log_level)}
        options.update(orchestrator_options or {})
        state["orchestrator"] = CameraOrchestrator(settings, adb_factory=_adb_factory, **options)
        state["orchestrator"].logbook.addFilter(_exclude_api_events)
        _log_event("config.loaded", path=str(resolved_path))
        try:
            yield
        finally:
            await state["orchestrator"].close()
            state["orchestrator"] = None
            state["settings"] = None
            _log_event("config.unloaded")

    app = FastAPI(
        title="droidbooth",
        description="Drive an Android phone as a photo booth camera over adb.",
        version="1.0.0",
        lifespan=_lifespan,
    )

    def _require_orchestrator() -> CameraOrchestrator:
        orchestrator = state.get("orchestrator")
        if orchestrator is None:
            raise HTTPException(status_code=503, detail={"message": "Service not initialized"})
        return orchestrator

    async def _authorize(credentials: AuthCredentials) -> None:
        token = state.get("api_token")
        if token is None:
            return
        if credentials is None or credentials.credentials != token:
            raise HTTPException(status_code=401, detail={"message": "Invalid or missing API token"})

    async def _run(event: str, operation: Callable[[], Awaitable[T]]) -> T:
        _log_event(f"{event}.start")
        try:
            result = await operation()
        except DeviceUnavailable as exc:
            _log_event(f"{event}.failed", reason=str(exc))
            raise HTTPException(status_code=503, detail={"message": str(exc)}) from exc
        except (DeviceNotInteractive, DeviceLocked) as exc:
            _log_event(f"{event}.failed", reason=str(exc))
            raise HTTPException(status_code=409, detail={"message": str(exc)}) from exc
        except (ADBError, ProbeFailure) as exc:
            _log_event(f"{event}.failed", reason=str(exc))
            raise HTTPException(status_code=502, detail={"message": str(exc)}) from exc
        _log_event(f"{event}.success")
        return result

    @app.get("/")
    async def root() -> dict[str, Any]:
        settings = state.get("settings")
        orchestrator = state.get("orchestrator")
        return {
            "service": SERVICE_NAME,
            "version": app.version,
            "config_path": state.get("config_path"),
            "timeout": settings.timeout if settings else None,
            "auth_enabled": bool(state.get("api_token")),
            "phase": orchestrator.phase.name.lower() if orchestrator else None,
        }

    @app.get("/health")
    async def health() -> dict[str, Any]:
        orchestrator = _require_orchestrator()
        try:
            device = await orchestrator.detect_device(force=True)
        except (DeviceUnavailable, ADBError) as exc:
            _log_event("health.reported", status="no-device")
            return {"service": SERVICE_NAME, "status": "no-device", "issues": [str(exc)]}

        _log_event("health.reported", status="healthy", device=device.serial)
        return {
            "service": SERVICE_NAME,
            "status": "healthy",
            "device": {"serial": device.serial, "model": device.model, "authorized": device.authorized},
            "download_loop": orchestrator.download_loop_running,
            "focus_loop": orchestrator.focus_loop_running,
        }

    @app.post("/device/detect")
    async def detect(_: None = Depends(_authorize)) -> dict[str, Any]:
        orchestrator = _require_orchestrator()
        device = await _run("detect", lambda: orchestrator.detect_device(force=True))
        return {"service": SERVICE_NAME, "device": str(device), "serial": device.serial}

    @app.post("/camera/open")
    async def open_camera(_: None = Depends(_authorize)) -> dict[str, Any]:
        orchestrator = _require_orchestrator()
        await _run("camera_open", orchestrator.open_camera)
        return {"service": SERVICE_NAME, "opened": True}

    @app.post("/photo")
    async def take_photo(_: None = Depends(_authorize)) -> dict[str, Any]:
        orchestrator = _require_orchestrator()
        await _run("photo", orchestrator.take_photo)
        return {"service": SERVICE_NAME, "taken": True}

    @app.post("/focus")
    async def focus(_: None = Depends(_authorize)) -> dict[str, Any]:
        orchestrator = _require_orchestrator()
        await _run("focus", orchestrator.focus)
        return {"service": SERVICE_NAME, "focused": True}

    @app.post("/download")
    async def download(_: None = Depends(_authorize)) -> dict[str, Any]:
        orchestrator = _require_orchestrator()
        counter = await _run("download", orchestrator.download_files)
        return {"service": SERVICE_NAME, "last_counter": counter}

    @app.post("/download/loop/{action}")
    async def download_loop(action: str, _: None = Depends(_authorize)) -> dict[str, Any]:
        orchestrator = _require_orchestrator()
        changed = await _toggle(action, orchestrator.start_periodic_download, orchestrator.stop_periodic_download)
        return {"service": SERVICE_NAME, "running": orchestrator.download_loop_running, "changed": changed}

    @app.post("/focus/loop/{action}")
    async def focus_loop(action: str, _: None = Depends(_authorize)) -> dict[str, Any]:
        orchestrator = _require_orchestrator()
        changed = await _toggle(action, orchestrator.start_focus_keepalive, orchestrator.stop_focus_keepalive)
        return {"service": SERVICE_NAME, "running": orchestrator.focus_loop_running, "changed": changed}

    @app.post("/reset")
    async def reset(_: None = Depends(_authorize)) -> dict[str, Any]:
        orchestrator = _require_orchestrator()
        await orchestrator.reset()
        _log_event("session.reset")
        return {"service": SERVICE_NAME, "phase": orchestrator.phase.name.lower()}

    @app.get("/log")
    async def log(limit: int = 50, level: str = "INFO") -> dict[str, Any]:
        orchestrator = _require_orchestrator()
        min_level = logging.getLevelName(level.upper())
        if not isinstance(min_level, int):
            raise HTTPException(status_code=400, detail={"message": f"Unknown log level {level}"})
        entries = orchestrator.logbook.entries(min_level)[-limit:] if limit > 0 else []
        return {"service": SERVICE_NAME, "entries": [entry.render() for entry in entries]}

    return app


async def _toggle(
    action: str,
    start: Callable[[], bool],
    stop: Callable[[], Awaitable[bool]],
) -> bool:
    if action == "start":
        changed = start()
    elif action == "stop":
        changed = await stop()
    else:
        raise HTTPException(status_code=404, detail={"message": f"Unknown loop action '{action}'"})
    if not changed:
        _log_event("loop.unchanged", action=action)
    return changed


def _resolve_config_path(
    override: str | None = None,
    extra_search_paths: Iterable[str | os.PathLike[str]] | None = None,
) -> Path:
    candidate = override or os.getenv(CONFIG_ENV_VAR)
    if candidate:
        path = _normalize_path(candidate)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found at {path}")
        return path

    search_candidates: list[Path] = []
    env_search = os.getenv(CONFIG_SEARCH_PATHS_ENV_VAR)
    if env_search:
        for raw in env_search.split(os.pathsep):
            cleaned = raw.strip()
            if cleaned:
                search_candidates.append(Path(cleaned))

    if extra_search_paths:
        for configured in extra_search_paths:
            search_candidates.append(Path(str(configured)))

    search_candidates.extend(DEFAULT_CONFIG_SEARCH_PATHS)

    evaluated_paths: list[Path] = []
    for candidate_path in search_candidates:
        path = _normalize_path(candidate_path)
        evaluated_paths.append(path)
        if path.exists():
            return path

    searched = ", ".join(str(p) for p in evaluated_paths)
    raise FileNotFoundError(
        (
            "Unable to locate configuration file. Set "
            f"{CONFIG_ENV_VAR} or place config.yaml in one of: {searched}"
        )
    )


def _normalize_path(candidate: str | os.PathLike[str]) -> Path:
    path = Path(candidate).expanduser()
    if not path.is_absolute():
        path = Path.cwd() / path
    return path


def _configure_logging() -> int:
    level_name = os.getenv(LOG_LEVEL_ENV_VAR, "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.getLogger(SERVICE_NAME).setLevel(level)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format="%(message)s")
    return level


def _exclude_api_events(record: logging.LogRecord) -> bool:
    return record.name != logger.name


def _log_event(event: str, **fields: Any) -> None:
    record = {"event": event, "service": SERVICE_NAME, **fields}
    logger.info(json.dumps(record, sort_keys=True))
