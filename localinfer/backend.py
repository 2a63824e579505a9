import logging
from importlib import metadata
from pathlib import Path
from types import ModuleType
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Protocol

from .enums import InferenceCloseReasons
from .schemas import (
    AuthState,
    CreateSessionRequest,
    CreateSessionResponse,
    HostDescriptor,
    HostRegistrationRecord,
    HostSettings,
    RegisteredModel,
    RequiredModelManifestEntry,
    SendRequest,
    SendResponse,
    UserSettings,
)


logger = logging.getLogger("uvicorn.error")

TOOL_ENTRY_POINT_GROUP = "localinfer.tools"

ProgressCallback = Callable[[float, int, Optional[int]], None]


class SettingsService(Protocol):
    settings: HostSettings

    async def load(self) -> HostSettings:
        ...

    async def save(self) -> None:
        ...

    def get_root_folder(self) -> str:
        ...


class UserSettingsProvider(Protocol):
    async def get(self) -> UserSettings:
        ...


class AuthStateProvider(Protocol):
    async def get_auth_state(self) -> AuthState:
        ...


class ModelsClient(Protocol):
    async def get_required_models(self) -> List[RequiredModelManifestEntry]:
        ...

    async def register_host(self, descriptor: HostDescriptor) -> HostRegistrationRecord:
        ...


class ModelDownloader(Protocol):
    async def download(
        self,
        url: str,
        destination: Path,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[Any] = None,
    ) -> Path:
        ...


class InferenceBackend(Protocol):
    @property
    def default_model(self) -> Optional[RegisteredModel]:
        ...

    @property
    def local_models(self) -> List[RegisteredModel]:
        ...

    def load_tools(self) -> None:
        ...

    def load_tools_from_module(self, module: ModuleType) -> None:
        ...

    def load_models(self) -> None:
        ...

    async def create_session(self, request: CreateSessionRequest) -> CreateSessionResponse:
        ...

    def send(self, request: SendRequest) -> AsyncIterator[SendResponse]:
        ...

    async def close_session(self, inference_id: str, reason: InferenceCloseReasons) -> None:
        ...


def resolve_model_folder(settings_service: SettingsService) -> Path:
    raw = settings_service.settings.model.model_folder_path or "./models"
    path = Path(raw).expanduser()
    if not path.is_absolute():
        path = Path(settings_service.get_root_folder()) / path
    return path


class LocalModelCatalog:
    """Registered models whose files are present in the model folder."""

    def __init__(self, settings_service: SettingsService):
        self.settings_service = settings_service
        self.models: List[RegisteredModel] = []

    def load(self) -> List[RegisteredModel]:
        folder = resolve_model_folder(self.settings_service)
        present = set()
        if folder.is_dir():
            present = {p.name.lower() for p in folder.iterdir() if p.is_file()}
        loaded: List[RegisteredModel] = []
        for model in self.settings_service.settings.model.models:
            if not model.enabled:
                continue
            if model.file_name.lower() not in present:
                logger.warning("Registered model %s missing file %s in %s", model.name, model.file_name, folder)
                continue
            loaded.append(model)
        self.models = loaded
        return loaded

    @property
    def default(self) -> Optional[RegisteredModel]:
        for model in self.models:
            if model.is_default:
                return model
        return self.models[0] if self.models else None

    def by_name(self, name: str) -> Optional[RegisteredModel]:
        for model in self.models:
            if model.name == name:
                return model
        return None


class ToolCatalog:
    """Named tools contributed by the built-in set and by plugin modules.

    A plugin module exposes either ``TOOLS`` (an iterable of objects with a
    ``name`` attribute) or ``register_tools(catalog)``.
    """

    def __init__(self) -> None:
        self.tools: Dict[str, Any] = {}

    def add(self, tool: Any) -> None:
        name = getattr(tool, "name", None) or getattr(tool, "__name__", None)
        if not name:
            raise ValueError("tool has no name")
        self.tools[str(name)] = tool

    def load_module(self, module: ModuleType) -> int:
        before = len(self.tools)
        register = getattr(module, "register_tools", None)
        if callable(register):
            register(self)
        for tool in getattr(module, "TOOLS", []) or []:
            self.add(tool)
        return len(self.tools) - before


def discover_tool_modules(group: str = TOOL_ENTRY_POINT_GROUP) -> List[ModuleType]:
    modules: List[ModuleType] = []
    for entry_point in metadata.entry_points(group=group):
        try:
            loaded = entry_point.load()
        except Exception as exc:
            logger.warning("Tool plugin %s failed to load: %s", entry_point.name, exc)
            continue
        if isinstance(loaded, ModuleType):
            modules.append(loaded)
        else:
            module = getattr(loaded, "__module__", None)
            logger.warning("Tool plugin %s is not a module (%s); skipping", entry_point.name, module)
    return modules
