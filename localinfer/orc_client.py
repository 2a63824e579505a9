from typing import Any, Dict, List, Optional

import httpx

from .errors import OrcClientError
from .schemas import HostDescriptor, HostRegistrationRecord, RequiredModelManifestEntry


def _pick(item: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in item and item[key] is not None:
            return item[key]
    return default


def _manifest_entry(item: Dict[str, Any]) -> Optional[RequiredModelManifestEntry]:
    name = _pick(item, "name", "Name")
    file_name = _pick(item, "file_name", "fileName", "FileName")
    if not name or not file_name:
        return None
    return RequiredModelManifestEntry(
        name=str(name),
        file_name=str(file_name),
        url=str(_pick(item, "url", "Url", default="") or ""),
        is_default=bool(_pick(item, "is_default", "isDefault", "IsDefault", default=False)),
        is_multi_modal=bool(_pick(item, "is_multi_modal", "isMultiModal", "IsMultiModal", default=False)),
        has_reasoning=bool(_pick(item, "has_reasoning", "hasReasoning", "HasReasoning", default=False)),
    )


class OrcModelsClient:
    """HTTP client for the model manifest and host registration endpoints."""

    def __init__(
        self,
        base_url: str,
        *,
        auth_provider: Optional[Any] = None,
        manifest_path: str = "/api/models/required",
        register_path: str = "/api/hosts/register",
        timeout: float = 60.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.auth_provider = auth_provider
        self.manifest_path = manifest_path
        self.register_path = register_path
        self.client = httpx.AsyncClient(timeout=timeout)

    async def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.auth_provider is not None:
            state = await self.auth_provider.get_auth_state()
            if state.client_key:
                headers["X-Client-Key"] = state.client_key
        return headers

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            resp = await self.client.request(method, url, json=payload, headers=await self._headers())
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            detail: Any
            try:
                detail = e.response.json()
            except Exception:
                detail = e.response.text
            raise OrcClientError(
                f"{method} {path} failed with HTTP {e.response.status_code}",
                status_code=e.response.status_code,
                detail=detail,
            ) from e
        except httpx.RequestError as e:
            raise OrcClientError(f"{method} {path} failed: {e}") from e

    async def get_required_models(self) -> List[RequiredModelManifestEntry]:
        data = await self._request("GET", self.manifest_path)
        items = data.get("models", []) if isinstance(data, dict) else data
        entries: List[RequiredModelManifestEntry] = []
        for item in items or []:
            if not isinstance(item, dict):
                continue
            entry = _manifest_entry(item)
            if entry:
                entries.append(entry)
        return entries

    async def register_host(self, descriptor: HostDescriptor) -> HostRegistrationRecord:
        payload = {
            "machineName": descriptor.machine_name,
            "operatingSystem": descriptor.os_description,
            "operatingSystemVersion": descriptor.os_version,
            "region": descriptor.region,
        }
        data = await self._request("POST", self.register_path, payload)
        if not isinstance(data, dict):
            raise OrcClientError("register response was not an object", detail=data)
        host_id = _pick(data, "host_id", "hostId", "id")
        secret_key = _pick(data, "secret_key", "secretKey")
        if not host_id or not secret_key:
            raise OrcClientError("register response missing host id or secret key", detail=data)
        return HostRegistrationRecord(host_id=str(host_id), secret_key=str(secret_key))

    async def close(self) -> None:
        if not self.client.is_closed:
            await self.client.aclose()
