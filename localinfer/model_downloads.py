import asyncio
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import httpx

from .backend import ModelDownloader, ModelsClient, ProgressCallback, SettingsService, resolve_model_folder
from .errors import DownloadCancelled, ModelValidationError
from .events import MODEL_REGISTERED, StateEventBus
from .schemas import ModelDownloadInfo, RegisteredModel, RequiredModelManifestEntry


logger = logging.getLogger("uvicorn.error")

GGUF_MAGIC = b"GGUF"
DOWNLOAD_CHUNK_SIZE = 1024 * 1024


def validate_model_file(path: Path) -> None:
    """Cheap format check: GGUF files must carry the magic header, anything else must be non-empty."""
    size = path.stat().st_size
    if size == 0:
        raise ModelValidationError(f"{path.name} is empty")
    if path.suffix.lower() == ".gguf":
        with path.open("rb") as fh:
            header = fh.read(len(GGUF_MAGIC))
        if header != GGUF_MAGIC:
            raise ModelValidationError(f"{path.name} does not start with a GGUF header")


class HttpModelDownloader:
    """Streams a model to ``<file>.part`` and renames it into place once complete."""

    def __init__(self, timeout: float = 600.0, chunk_size: int = DOWNLOAD_CHUNK_SIZE):
        self.client = httpx.AsyncClient(timeout=timeout, follow_redirects=True)
        self.chunk_size = chunk_size

    async def download(
        self,
        url: str,
        destination: Path,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Path:
        destination.parent.mkdir(parents=True, exist_ok=True)
        partial = destination.with_name(destination.name + ".part")
        received = 0
        total: Optional[int] = None
        try:
            async with self.client.stream("GET", url) as resp:
                resp.raise_for_status()
                length = resp.headers.get("Content-Length")
                total = int(length) if length and length.isdigit() else None
                with partial.open("wb") as fh:
                    async for chunk in resp.aiter_bytes(self.chunk_size):
                        if cancel_event is not None and cancel_event.is_set():
                            raise DownloadCancelled(f"download of {destination.name} cancelled")
                        fh.write(chunk)
                        received += len(chunk)
                        if on_progress:
                            on_progress(received / total if total else 0.0, received, total)
            os.replace(partial, destination)
        except (Exception, asyncio.CancelledError):
            partial.unlink(missing_ok=True)
            raise
        if on_progress:
            on_progress(1.0, received, total)
        return destination

    async def close(self) -> None:
        if not self.client.is_closed:
            await self.client.aclose()


class ModelDownloadReconciler:
    """Decides which required model files are missing and registers downloaded ones.

    Files already on disk are validated but never deleted or fetched again.
    """

    def __init__(
        self,
        settings_service: SettingsService,
        models_client: ModelsClient,
        downloader: ModelDownloader,
        *,
        validator: Callable[[Path], None] = validate_model_file,
        bus: Optional[StateEventBus] = None,
    ):
        self.settings_service = settings_service
        self.models_client = models_client
        self.downloader = downloader
        self.validator = validator
        self.bus = bus

    def _existing_files(self, folder: Path) -> Dict[str, Path]:
        folder.mkdir(parents=True, exist_ok=True)
        return {p.name.lower(): p for p in folder.iterdir() if p.is_file()}

    def _is_valid(self, path: Path) -> bool:
        try:
            self.validator(path)
        except (ModelValidationError, OSError) as exc:
            logger.warning("Model file %s failed validation; keeping it as-is: %s", path, exc)
            return False
        return True

    async def _scan(self) -> List[Any]:
        await self.settings_service.load()
        folder = resolve_model_folder(self.settings_service)
        existing = self._existing_files(folder)
        required: List[RequiredModelManifestEntry] = await self.models_client.get_required_models()
        return [(entry, existing.get(entry.file_name.lower())) for entry in required]

    async def get_required_downloads(self) -> List[ModelDownloadInfo]:
        try:
            missing: List[ModelDownloadInfo] = []
            for entry, present in await self._scan():
                if present is None:
                    missing.append(ModelDownloadInfo.from_manifest(entry))
                    continue
                self._is_valid(present)
            return missing
        except Exception:
            logger.exception("Failed to check required model downloads")
            return []

    async def download_model(
        self,
        info: ModelDownloadInfo,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> bool:
        folder = resolve_model_folder(self.settings_service)
        await self.downloader.download(info.url, folder / info.file_name, on_progress, cancel_event)
        return await self._register(info)

    async def register_existing_models(self) -> List[str]:
        """Register manifest models whose files are on disk and valid but unknown to the registry."""
        try:
            registered: List[str] = []
            for entry, present in await self._scan():
                if present is None or not self._is_valid(present):
                    continue
                if await self._register(ModelDownloadInfo.from_manifest(entry)):
                    registered.append(entry.name)
            return registered
        except Exception:
            logger.exception("Failed to register existing model files")
            return []

    async def _register(self, info: ModelDownloadInfo) -> bool:
        settings = self.settings_service.settings
        if any(m.name == info.name for m in settings.model.models):
            return False
        if info.is_default:
            for existing in settings.model.models:
                existing.is_default = False
        settings.model.models.append(
            RegisteredModel(
                name=info.name,
                file_name=info.file_name,
                url=info.url,
                enabled=True,
                is_default=info.is_default,
                is_multi_modal=info.is_multi_modal,
                has_reasoning=info.has_reasoning,
            )
        )
        await self.settings_service.save()
        logger.info("Registered model %s (%s)", info.name, info.file_name)
        if self.bus is not None:
            await self.bus.emit(MODEL_REGISTERED, {"name": info.name, "is_default": info.is_default})
        return True
