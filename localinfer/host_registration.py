import asyncio
import logging
import platform

from .backend import AuthStateProvider, ModelsClient, SettingsService
from .schemas import HostDescriptor


logger = logging.getLogger("uvicorn.error")

LOCAL_REGION = "local"


def describe_host(region: str = LOCAL_REGION) -> HostDescriptor:
    return HostDescriptor(
        machine_name=platform.node() or "localhost",
        os_description=platform.platform(),
        os_version=platform.version(),
        region=region,
    )


class HostRegistrationGuard:
    """Registers this machine as a host once the user is signed in.

    Registration only happens while authenticated and before a secret key has
    been stored; failures are logged and retried on the next call.
    """

    def __init__(
        self,
        settings_service: SettingsService,
        auth_provider: AuthStateProvider,
        models_client: ModelsClient,
        region: str = LOCAL_REGION,
    ):
        self.settings_service = settings_service
        self.auth_provider = auth_provider
        self.models_client = models_client
        self.region = region
        self._lock = asyncio.Lock()

    async def _needs_registration(self) -> bool:
        if self.settings_service.settings.host.secret_key.strip():
            return False
        state = await self.auth_provider.get_auth_state()
        return state.is_authenticated

    async def ensure_registered(self) -> bool:
        try:
            if not await self._needs_registration():
                return False
            async with self._lock:
                if not await self._needs_registration():
                    return False
                record = await self.models_client.register_host(describe_host(self.region))
                host = self.settings_service.settings.host
                host.host_id = record.host_id
                host.secret_key = record.secret_key
                await self.settings_service.save()
            logger.info("Registered local host %s", record.host_id)
            return True
        except Exception as exc:
            logger.warning("Host registration failed; will retry on next initialize: %s", exc)
            return False
