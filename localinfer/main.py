import asyncio
import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.responses import StreamingResponse

from .backend import InferenceBackend, ModelDownloader, ModelsClient, discover_tool_modules
from .config import AppSettings, CONFIG_PATH, load_settings
from .content_cleaner import clean
from .diagnostics import DiagnosticsLog
from .errors import DownloadCancelled, LocalInferError
from .events import StateEventBus
from .host_registration import HostRegistrationGuard
from .http_backend import OpenAICompatibleBackend
from .local_inference import LocalInferenceService
from .model_downloads import HttpModelDownloader, ModelDownloadReconciler
from .orc_client import OrcModelsClient
from .plan_parser import extract_plan, parse
from .schemas import (
    AuthState,
    AvailableModel,
    CreateSessionRequest,
    DownloadRequest,
    ParsePlanRequest,
    SendBody,
    SendRequest,
    TurnRequest,
    supported_think_levels,
)
from .store import KeyValueStore, SqliteAuthStateStore, SqliteSettingsService, SqliteUserSettingsStore


logger = logging.getLogger("uvicorn.error")

router = APIRouter()


def get_event_bus(request: Request) -> StateEventBus:
    return request.app.state.bus


def get_inference(request: Request) -> LocalInferenceService:
    return request.app.state.inference


def get_reconciler(request: Request) -> ModelDownloadReconciler:
    return request.app.state.reconciler


def get_auth_store(request: Request) -> SqliteAuthStateStore:
    return request.app.state.auth_store


def get_registration_guard(request: Request) -> HostRegistrationGuard:
    return request.app.state.registration_guard


def get_downloads(request: Request) -> Dict[str, Dict[str, Any]]:
    return request.app.state.downloads


def get_download_tasks(request: Request) -> Dict[str, asyncio.Task]:
    return request.app.state.download_tasks


def get_download_stop_events(request: Request) -> Dict[str, asyncio.Event]:
    return request.app.state.download_stop_events


def sse_format(event: dict) -> str:
    return f"data: {json.dumps(event)}\n\n"


@router.get("/status")
async def status(
    inference: LocalInferenceService = Depends(get_inference),
    auth_store: SqliteAuthStateStore = Depends(get_auth_store),
):
    auth = await auth_store.get_auth_state()
    default = inference.backend.default_model
    host = inference.settings_service.settings.host
    return {
        "initialized": inference.initialized,
        "available": inference.is_available,
        "default_model": default.name if default else None,
        "models": [m.name for m in inference.backend.local_models],
        "authenticated": auth.is_authenticated,
        "host_id": host.host_id or None,
        "host_registered": bool(host.secret_key),
    }


@router.post("/initialize")
async def initialize(inference: LocalInferenceService = Depends(get_inference)):
    ok = await inference.initialize()
    return {"ok": ok, "available": inference.is_available}


@router.put("/auth")
async def update_auth(
    state: AuthState,
    auth_store: SqliteAuthStateStore = Depends(get_auth_store),
    guard: HostRegistrationGuard = Depends(get_registration_guard),
):
    await auth_store.save(state)
    registered = await guard.ensure_registered()
    return {"authenticated": state.is_authenticated, "registered": registered}


@router.delete("/auth")
async def clear_auth(auth_store: SqliteAuthStateStore = Depends(get_auth_store)):
    await auth_store.clear()
    return {"ok": True}


@router.get("/models")
async def list_models(inference: LocalInferenceService = Depends(get_inference)):
    default = inference.backend.default_model
    models: List[Dict[str, Any]] = []
    for model in inference.backend.local_models:
        available = AvailableModel(
            name=model.name,
            enabled=model.enabled,
            is_multi_modal=model.is_multi_modal,
            has_reasoning=model.has_reasoning,
            is_default=default is not None and default.name == model.name,
            supported_think_levels=supported_think_levels(model.has_reasoning),
        )
        models.append(available.model_dump(mode="json"))
    return {"models": models}


@router.get("/models/downloads")
async def list_downloads(
    reconciler: ModelDownloadReconciler = Depends(get_reconciler),
    downloads: Dict[str, Dict[str, Any]] = Depends(get_downloads),
):
    missing = await reconciler.get_required_downloads()
    return {
        "missing": [info.model_dump(mode="json") for info in missing],
        "downloads": {name: dict(progress) for name, progress in downloads.items()},
    }


@router.post("/models/downloads")
async def start_download(
    payload: DownloadRequest,
    inference: LocalInferenceService = Depends(get_inference),
    reconciler: ModelDownloadReconciler = Depends(get_reconciler),
    downloads: Dict[str, Dict[str, Any]] = Depends(get_downloads),
    download_tasks: Dict[str, asyncio.Task] = Depends(get_download_tasks),
    stop_events: Dict[str, asyncio.Event] = Depends(get_download_stop_events),
):
    if payload.name in stop_events:
        raise HTTPException(status_code=409, detail="Download already running")
    # Reserve the name before awaiting so a concurrent request sees it.
    stop_event = asyncio.Event()
    stop_events[payload.name] = stop_event
    try:
        missing = await reconciler.get_required_downloads()
    except (Exception, asyncio.CancelledError):
        stop_events.pop(payload.name, None)
        raise
    info = next((m for m in missing if m.name == payload.name), None)
    if info is None:
        stop_events.pop(payload.name, None)
        raise HTTPException(status_code=404, detail="Model is not a missing required download")

    progress: Dict[str, Any] = {"status": "running", "fraction": 0.0, "bytes": 0, "total": None, "error": None}
    downloads[info.name] = progress

    def on_progress(fraction: float, received: int, total: Optional[int]) -> None:
        progress.update(fraction=fraction, bytes=received, total=total)

    async def download_and_cleanup() -> None:
        try:
            await reconciler.download_model(info, on_progress, stop_event)
            progress["status"] = "complete"
            if inference.initialized:
                inference.backend.load_models()
        except DownloadCancelled:
            progress["status"] = "cancelled"
        except asyncio.CancelledError:
            progress["status"] = "cancelled"
            raise
        except Exception as exc:
            logger.exception("Download of %s failed", info.name)
            progress.update(status="error", error=str(exc))
        finally:
            if download_tasks.get(info.name) is task:
                download_tasks.pop(info.name, None)
            if stop_events.get(info.name) is stop_event:
                stop_events.pop(info.name, None)

    task = asyncio.create_task(download_and_cleanup())
    download_tasks[info.name] = task
    return {"ok": True, "name": info.name}


@router.delete("/models/downloads/{name}")
async def cancel_download(
    name: str,
    stop_events: Dict[str, asyncio.Event] = Depends(get_download_stop_events),
):
    stop_event = stop_events.get(name)
    if stop_event is None:
        raise HTTPException(status_code=404, detail="Download not running")
    stop_event.set()
    return {"ok": True}


@router.post("/models/register-existing")
async def register_existing(
    inference: LocalInferenceService = Depends(get_inference),
    reconciler: ModelDownloadReconciler = Depends(get_reconciler),
):
    registered = await reconciler.register_existing_models()
    if registered and inference.initialized:
        inference.backend.load_models()
    return {"registered": registered}


@router.post("/sessions")
async def create_session(
    payload: CreateSessionRequest,
    inference: LocalInferenceService = Depends(get_inference),
):
    try:
        response = await inference.create_session(payload)
    except LocalInferError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    except Exception as exc:
        raise HTTPException(status_code=502, detail=f"Backend error: {exc}")
    return response.model_dump(mode="json")


@router.post("/sessions/{inference_id}/send")
async def send_to_session(
    inference_id: str,
    payload: SendBody,
    inference: LocalInferenceService = Depends(get_inference),
):
    request = SendRequest(inference_id=inference_id, **payload.model_dump())

    async def event_generator():
        stream = inference.send(request)
        try:
            async for response in stream:
                yield sse_format(
                    {"inference_id": response.inference_id, "content": response.content, "type": response.type.name}
                )
            yield sse_format({"inference_id": inference_id, "content": "", "type": "DONE"})
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            yield sse_format({"inference_id": inference_id, "content": str(exc), "type": "ERROR"})
        finally:
            await stream.aclose()

    return StreamingResponse(event_generator(), media_type="text/event-stream")


@router.delete("/sessions/{inference_id}")
async def close_session(inference_id: str, inference: LocalInferenceService = Depends(get_inference)):
    await inference.close_session(inference_id)
    return {"ok": True}


@router.post("/turns")
async def stream_turn(payload: TurnRequest, inference: LocalInferenceService = Depends(get_inference)):
    text = payload.text.strip()
    if not text:
        raise HTTPException(status_code=400, detail="Text is required.")

    async def event_generator():
        turn = inference.stream_turn(payload.config, text)
        try:
            async for chunk in turn:
                yield sse_format(chunk.to_dict())
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            yield sse_format({"content": str(exc), "type": "Error", "is_complete": True})
        finally:
            await turn.aclose()

    return StreamingResponse(event_generator(), media_type="text/event-stream")


@router.post("/plans/parse")
async def parse_plan(payload: ParsePlanRequest):
    cleaned = clean(payload.text)
    plan = extract_plan(cleaned) if payload.lenient else parse(cleaned)
    return {
        "cleaned": cleaned,
        "plan": plan.to_payload().model_dump(by_alias=True) if plan else None,
    }


@router.get("/events")
async def stream_state_events(bus: StateEventBus = Depends(get_event_bus)):
    async def event_generator():
        queue = await bus.subscribe()
        try:
            while True:
                ev = await queue.get()
                yield sse_format(ev)
        except asyncio.CancelledError:
            pass
        finally:
            await bus.unsubscribe(queue)

    return StreamingResponse(event_generator(), media_type="text/event-stream")


def create_app(
    settings: AppSettings,
    *,
    kv: Optional[KeyValueStore] = None,
    backend: Optional[InferenceBackend] = None,
    models_client: Optional[ModelsClient] = None,
    downloader: Optional[ModelDownloader] = None,
    tool_module_loader: Optional[Callable[[], list]] = None,
    config_path: Optional[Path] = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await app.state.kv.init_db()
        await app.state.settings_service.load()
        try:
            yield
        finally:
            for task in list(app.state.download_tasks.values()):
                task.cancel()
            for resource in (app.state.backend, app.state.models_client, app.state.downloader):
                close = getattr(resource, "close", None)
                if close is not None:
                    await close()

    app = FastAPI(title="LocalInfer Host", lifespan=lifespan)
    bus = StateEventBus(max_queue_size=256)
    kv = kv or KeyValueStore(settings.database_path)
    settings_service = SqliteSettingsService(kv, settings.root_folder)
    auth_store = SqliteAuthStateStore(kv, bus)
    models_client = models_client or OrcModelsClient(
        settings.orc_base_url,
        auth_provider=auth_store,
        manifest_path=settings.models_manifest_path,
        register_path=settings.register_path,
        timeout=settings.request_timeout_s,
    )
    downloader = downloader or HttpModelDownloader(timeout=settings.download_timeout_s)
    backend = backend or OpenAICompatibleBackend(
        settings_service, base_url=settings.inference_base_url, timeout=settings.request_timeout_s
    )
    guard = HostRegistrationGuard(settings_service, auth_store, models_client)

    app.state.settings = settings
    app.state.config_path = config_path or CONFIG_PATH
    app.state.bus = bus
    app.state.kv = kv
    app.state.settings_service = settings_service
    app.state.auth_store = auth_store
    app.state.models_client = models_client
    app.state.downloader = downloader
    app.state.backend = backend
    app.state.registration_guard = guard
    app.state.reconciler = ModelDownloadReconciler(settings_service, models_client, downloader, bus=bus)
    app.state.inference = LocalInferenceService(
        settings_service,
        backend,
        guard,
        user_settings_provider=SqliteUserSettingsStore(kv),
        tool_module_loader=tool_module_loader or discover_tool_modules,
        bus=bus,
        diag=DiagnosticsLog(settings.diag_log_path),
    )
    app.state.downloads = {}
    app.state.download_tasks = {}
    app.state.download_stop_events = {}

    app.include_router(router)
    return app


app = create_app(load_settings())


if __name__ == "__main__":
    import os
    import uvicorn

    settings = app.state.settings
    reload_enabled = os.getenv("LOCALINFER_RELOAD", "").lower() in ("1", "true", "yes", "on")
    try:
        uvicorn.run(
            "localinfer.main:app",
            host=settings.host,
            port=settings.port,
            reload=reload_enabled,
        )
    except KeyboardInterrupt:
        pass
