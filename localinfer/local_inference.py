import asyncio
import logging
from types import ModuleType
from typing import AsyncGenerator, Callable, List, Optional, Set

from .backend import InferenceBackend, SettingsService, UserSettingsProvider, discover_tool_modules
from .content_cleaner import clean
from .diagnostics import DiagnosticsLog
from .enums import ChatMessageType, InferenceCloseReasons, InferenceResponseTypes, InferenceToolGroups
from .events import AVAILABILITY_CHANGED, SESSION_CLOSED, SESSION_OPENED, StateEventBus
from .host_registration import HostRegistrationGuard
from .mapping import from_response_type, to_wire_think_level, to_wire_tool_group
from .plan_parser import parse
from .schemas import (
    AgentConfig,
    CreateSessionRequest,
    CreateSessionResponse,
    SendRequest,
    SendResponse,
    StreamChunk,
)
from .skill_prompts import build_system_prompt


logger = logging.getLogger("uvicorn.error")

ACCUMULATED_TYPES = (InferenceResponseTypes.TEXT, InferenceResponseTypes.TOOL_CONTENT)


def chunk_type_name(message_type: ChatMessageType) -> str:
    return "".join(part.capitalize() for part in message_type.name.split("_"))


class LocalInferenceService:
    """Owns the local backend: bootstrap, then session create/send/close.

    ``initialize()`` runs at most one bootstrap at a time; concurrent callers
    share the in-flight attempt and its result. A failed bootstrap leaves the
    service uninitialized so the next call retries from the start.
    """

    def __init__(
        self,
        settings_service: SettingsService,
        backend: InferenceBackend,
        registration_guard: HostRegistrationGuard,
        *,
        user_settings_provider: Optional[UserSettingsProvider] = None,
        tool_module_loader: Callable[[], List[ModuleType]] = discover_tool_modules,
        bus: Optional[StateEventBus] = None,
        diag: Optional[DiagnosticsLog] = None,
    ):
        self.settings_service = settings_service
        self.backend = backend
        self.registration_guard = registration_guard
        self.user_settings_provider = user_settings_provider
        self.tool_module_loader = tool_module_loader
        self.bus = bus
        self.diag = diag
        self.initialized = False
        self.open_sessions: Set[str] = set()
        self._init_task: Optional[asyncio.Future] = None

    @property
    def is_available(self) -> bool:
        return self.initialized and self.backend.default_model is not None

    async def initialize(self) -> bool:
        if self.initialized:
            return True
        if self._init_task is None or self._init_task.done():
            self._init_task = asyncio.ensure_future(self._bootstrap())
        task = self._init_task
        try:
            return await asyncio.shield(task)
        finally:
            if task.done() and self._init_task is task:
                self._init_task = None

    async def _bootstrap(self) -> bool:
        try:
            await self.settings_service.load()
            await self._sync_user_settings()
            await self.registration_guard.ensure_registered()
            self.backend.load_tools()
            for module in self.tool_module_loader():
                self.backend.load_tools_from_module(module)
            self.backend.load_models()
        except Exception as exc:
            logger.exception("Failed to initialize local inference")
            self._diag(f"initialize failed: {exc!r}")
            return False
        self.initialized = True
        count = len(self.backend.local_models)
        logger.info("Local inference initialized. Models loaded: %s", count)
        self._diag(f"initialized with {count} local models")
        await self._emit(AVAILABILITY_CHANGED, {"available": self.is_available, "models": count})
        return True

    async def _sync_user_settings(self) -> None:
        if self.user_settings_provider is None:
            return
        try:
            user = await self.user_settings_provider.get()
            model = self.settings_service.settings.model
            if user.model_folder_path.strip():
                model.model_folder_path = user.model_folder_path
            if user.context_size > 0:
                model.context_size = user.context_size
            if user.batch_size > 0:
                model.batch_size = user.batch_size
            if user.gpu_layer_count is not None:
                model.gpu_layer_count = user.gpu_layer_count
            if user.llama_runtime is not None:
                model.llama_runtime = user.llama_runtime
            await self.settings_service.save()
        except Exception as exc:
            logger.warning("Could not sync user settings into host settings: %s", exc)

    async def create_session(self, request: CreateSessionRequest) -> CreateSessionResponse:
        if not self.initialized:
            await self.initialize()
        try:
            response = await self.backend.create_session(request)
        except Exception as exc:
            logger.exception("Failed to create inference session")
            self._diag(f"create_session failed: {exc!r}")
            raise
        self._diag(f"session created {response.inference_id} ({response.model_name})")
        self.open_sessions.add(response.inference_id)
        await self._emit(SESSION_OPENED, {"inference_id": response.inference_id, "model_name": response.model_name})
        return response

    async def send(
        self,
        request: SendRequest,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncGenerator[SendResponse, None]:
        if not self.initialized:
            await self.initialize()
        stream = self.backend.send(request)
        finished = False
        try:
            if cancel_event is not None and cancel_event.is_set():
                return
            async for response in stream:
                if cancel_event is not None and cancel_event.is_set():
                    break
                yield response
                if cancel_event is not None and cancel_event.is_set():
                    break
            else:
                finished = True
        except Exception as exc:
            logger.exception("Inference stream failed for session %s", request.inference_id)
            self._diag(f"send failed for {request.inference_id}: {exc!r}")
            raise
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
            if not finished:
                await self._close_abandoned(request.inference_id)

    async def _close_abandoned(self, inference_id: str) -> None:
        try:
            await self.close_session(inference_id)
        except Exception as exc:
            logger.warning("Failed to close abandoned session %s: %s", inference_id, exc)

    async def close_session(self, inference_id: str) -> None:
        self.open_sessions.discard(inference_id)
        await self.backend.close_session(inference_id, InferenceCloseReasons.CLOSE_REQUESTED_BY_CLIENT)
        await self._emit(SESSION_CLOSED, {"inference_id": inference_id})

    async def stream_turn(
        self,
        config: AgentConfig,
        text: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncGenerator[StreamChunk, None]:
        """One user turn: open a session from ``config``, stream it, then finish with a ``Complete`` chunk.

        Text and tool content are accumulated; the final chunk carries the
        cleaned text and the action plan found in it, if any.
        """
        tool_groups: List[InferenceToolGroups] = []
        for group in config.enabled_tool_groups:
            wire = to_wire_tool_group(group)
            if wire not in tool_groups:
                tool_groups.append(wire)
        create = CreateSessionRequest(
            model_name=config.model_name,
            initialization_prompt=build_system_prompt(config.initialization_prompt, config.enabled_skills),
            think_level=to_wire_think_level(config.think_level),
            tool_groups=tool_groups,
        )
        try:
            session = await self.create_session(create)
        except Exception as exc:
            yield StreamChunk(content=f"Error creating session: {exc}", type="Error", is_complete=True)
            return

        request = SendRequest(
            inference_id=session.inference_id,
            text=text,
            temperature=config.temperature,
            top_p=config.top_p,
            max_tokens=config.max_tokens,
            think_level=to_wire_think_level(config.think_level),
        )
        parts: List[str] = []
        turn = self.send(request, cancel_event=cancel_event)
        try:
            async for response in turn:
                if response.type in ACCUMULATED_TYPES:
                    parts.append(response.content)
                yield StreamChunk(content=response.content, type=chunk_type_name(from_response_type(response.type)))
        finally:
            await turn.aclose()
            if session.inference_id in self.open_sessions:
                await self._close_abandoned(session.inference_id)

        cleaned = clean("".join(parts))
        yield StreamChunk(content=cleaned, type="Complete", is_complete=True, plan=parse(cleaned))

    async def _emit(self, event_type: str, payload: dict) -> None:
        if self.bus is not None:
            await self.bus.emit(event_type, payload)

    def _diag(self, message: str) -> None:
        if self.diag is not None:
            self.diag.write(message)
