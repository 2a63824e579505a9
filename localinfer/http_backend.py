import json
import logging
import uuid
from types import ModuleType
from typing import Any, AsyncGenerator, Dict, Iterable, List, Optional

import httpx

from .backend import LocalModelCatalog, SettingsService, ToolCatalog
from .enums import InferenceCloseReasons, InferenceResponseTypes
from .errors import LocalInferError
from .schemas import CreateSessionRequest, CreateSessionResponse, RegisteredModel, SendRequest, SendResponse


logger = logging.getLogger("uvicorn.error")


class OpenAICompatibleBackend:
    """Inference backend that talks to a local OpenAI-compatible server (llama.cpp, LM Studio)."""

    def __init__(
        self,
        settings_service: SettingsService,
        *,
        base_url: str,
        builtin_tools: Optional[Iterable[Any]] = None,
        timeout: float = 60.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.catalog = LocalModelCatalog(settings_service)
        self.tools = ToolCatalog()
        self.builtin_tools = list(builtin_tools or [])
        self.client = httpx.AsyncClient(timeout=timeout)
        self.sessions: Dict[str, Dict[str, Any]] = {}

    @property
    def default_model(self) -> Optional[RegisteredModel]:
        return self.catalog.default

    @property
    def local_models(self) -> List[RegisteredModel]:
        return list(self.catalog.models)

    def load_tools(self) -> None:
        for tool in self.builtin_tools:
            self.tools.add(tool)

    def load_tools_from_module(self, module: ModuleType) -> None:
        added = self.tools.load_module(module)
        logger.info("Loaded %s tools from %s", added, module.__name__)

    def load_models(self) -> None:
        self.catalog.load()

    async def create_session(self, request: CreateSessionRequest) -> CreateSessionResponse:
        model = self.catalog.by_name(request.model_name) if request.model_name else None
        model = model or self.catalog.default
        if model is None:
            raise LocalInferError("no local model available")
        inference_id = uuid.uuid4().hex
        messages: List[Dict[str, str]] = []
        if request.initialization_prompt.strip():
            messages.append({"role": "system", "content": request.initialization_prompt})
        self.sessions[inference_id] = {
            "model": model.name,
            "messages": messages,
            "think_level": int(request.think_level),
            "tool_groups": [int(g) for g in request.tool_groups],
        }
        return CreateSessionResponse(inference_id=inference_id, model_name=model.name)

    async def send(self, request: SendRequest) -> AsyncGenerator[SendResponse, None]:
        session = self.sessions.get(request.inference_id)
        if session is None:
            raise LocalInferError(f"unknown inference session {request.inference_id}")
        session["messages"].append({"role": "user", "content": request.text})
        payload = {
            "model": session["model"],
            "messages": list(session["messages"]),
            "temperature": request.temperature,
            "top_p": request.top_p,
            "max_tokens": request.max_tokens,
            "stream": True,
        }
        answer: List[str] = []
        async with self.client.stream("POST", f"{self.base_url}/chat/completions", json=payload) as response:
            response.raise_for_status()
            async for line in response.aiter_lines():
                if not line.startswith("data:"):
                    continue
                chunk = line.replace("data:", "", 1).strip()
                if chunk == "[DONE]":
                    break
                try:
                    data = json.loads(chunk)
                except ValueError:
                    continue
                delta = (data.get("choices") or [{}])[0].get("delta") or {}
                reasoning = delta.get("reasoning") or delta.get("reasoning_content")
                if reasoning:
                    yield SendResponse(
                        inference_id=request.inference_id,
                        content=reasoning,
                        type=InferenceResponseTypes.THINKING,
                    )
                content = delta.get("content")
                if content:
                    answer.append(content)
                    yield SendResponse(
                        inference_id=request.inference_id,
                        content=content,
                        type=InferenceResponseTypes.TEXT,
                    )
        session["messages"].append({"role": "assistant", "content": "".join(answer)})

    async def close_session(self, inference_id: str, reason: InferenceCloseReasons) -> None:
        if self.sessions.pop(inference_id, None) is not None:
            logger.info("Closed inference session %s (%s)", inference_id, InferenceCloseReasons(reason).name)

    async def close(self) -> None:
        if not self.client.is_closed:
            await self.client.aclose()
