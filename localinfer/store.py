import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import aiosqlite

from .events import AUTH_STATE_CHANGED, StateEventBus
from .schemas import AuthState, HostSettings, UserSettings


HOST_SETTINGS_KEY = "host_settings"
USER_SETTINGS_KEY = "user_settings"
AUTH_STATE_KEY = "auth_state"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class KeyValueStore:
    """Small JSON-per-key table shared by the settings and auth stores."""

    def __init__(self, path: str):
        self.path = path
        self._schema_ready = False

    async def _ensure_schema(self, db: aiosqlite.Connection) -> None:
        if self._schema_ready:
            return
        await db.execute(
            "CREATE TABLE IF NOT EXISTS kv_settings(key TEXT PRIMARY KEY, value_json TEXT, updated_at TEXT)"
        )
        await db.commit()
        self._schema_ready = True

    async def init_db(self) -> None:
        Path(self.path).expanduser().parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self.path) as db:
            await self._ensure_schema(db)

    async def get_json(self, key: str) -> Optional[Dict[str, Any]]:
        async with aiosqlite.connect(self.path) as db:
            await self._ensure_schema(db)
            db.row_factory = aiosqlite.Row
            cursor = await db.execute("SELECT value_json FROM kv_settings WHERE key=?", (key,))
            row = await cursor.fetchone()
            await cursor.close()
        if not row:
            return None
        try:
            return json.loads(row["value_json"] or "{}")
        except Exception:
            return None

    async def set_json(self, key: str, value: Dict[str, Any]) -> None:
        async with aiosqlite.connect(self.path) as db:
            await self._ensure_schema(db)
            await db.execute(
                "INSERT OR REPLACE INTO kv_settings(key, value_json, updated_at) VALUES (?,?,?)",
                (key, json.dumps(value, ensure_ascii=True), utc_now()),
            )
            await db.commit()

    async def delete(self, key: str) -> None:
        async with aiosqlite.connect(self.path) as db:
            await self._ensure_schema(db)
            await db.execute("DELETE FROM kv_settings WHERE key=?", (key,))
            await db.commit()


class SqliteSettingsService:
    """Host settings: identity, model folder and registered models."""

    def __init__(self, kv: KeyValueStore, root_folder: str = "."):
        self.kv = kv
        self.root_folder = root_folder
        self.settings = HostSettings()

    async def load(self) -> HostSettings:
        data = await self.kv.get_json(HOST_SETTINGS_KEY)
        self.settings = HostSettings(**data) if data else HostSettings()
        return self.settings

    async def save(self) -> None:
        await self.kv.set_json(HOST_SETTINGS_KEY, self.settings.model_dump(mode="json"))

    def get_root_folder(self) -> str:
        return str(Path(self.root_folder).expanduser().resolve())


class SqliteUserSettingsStore:
    def __init__(self, kv: KeyValueStore):
        self.kv = kv

    async def get(self) -> UserSettings:
        data = await self.kv.get_json(USER_SETTINGS_KEY)
        return UserSettings(**data) if data else UserSettings()

    async def save(self, settings: UserSettings) -> None:
        await self.kv.set_json(USER_SETTINGS_KEY, settings.model_dump(mode="json"))


class SqliteAuthStateStore:
    """Read side of the auth flow; changes are announced on the event bus."""

    def __init__(self, kv: KeyValueStore, bus: Optional[StateEventBus] = None):
        self.kv = kv
        self.bus = bus

    async def get_auth_state(self) -> AuthState:
        data = await self.kv.get_json(AUTH_STATE_KEY)
        return AuthState(**data) if data else AuthState()

    async def save(self, state: AuthState) -> None:
        await self.kv.set_json(AUTH_STATE_KEY, state.model_dump(mode="json"))
        await self._announce(state)

    async def clear(self) -> None:
        await self.kv.delete(AUTH_STATE_KEY)
        await self._announce(AuthState())

    async def _announce(self, state: AuthState) -> None:
        if self.bus is None:
            return
        await self.bus.emit(
            AUTH_STATE_CHANGED,
            {"authenticated": state.is_authenticated, "user_name": state.user_name},
        )
