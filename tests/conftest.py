from pathlib import Path

import pytest
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient

from localinfer.config import AppSettings
from localinfer.main import create_app
from localinfer.store import KeyValueStore
from tests.fakes import FakeDownloader, FakeInferenceBackend, FakeModelsClient


def make_settings(tmp_path: Path, **overrides) -> AppSettings:
    settings = AppSettings(
        database_path=str(tmp_path / "test.db"),
        root_folder=str(tmp_path),
        orc_base_url="http://orc.test",
        inference_base_url="http://lm.test/v1",
        diag_log_path=str(tmp_path / "diag.log"),
        host="127.0.0.1",
        port=8100,
    )
    if overrides:
        settings = settings.model_copy(update=overrides)
    return settings


@pytest.fixture
def app_factory(tmp_path: Path):
    def _factory(
        *,
        backend: FakeInferenceBackend | None = None,
        models_client: FakeModelsClient | None = None,
        downloader: FakeDownloader | None = None,
        **settings_overrides,
    ):
        settings = make_settings(tmp_path, **settings_overrides)
        backend = backend or FakeInferenceBackend()
        models_client = models_client or FakeModelsClient()
        downloader = downloader or FakeDownloader()
        app = create_app(
            settings,
            kv=KeyValueStore(settings.database_path),
            backend=backend,
            models_client=models_client,
            downloader=downloader,
            tool_module_loader=lambda: [],
            config_path=tmp_path / "config.json",
        )
        return app, backend, models_client, downloader

    return _factory


@pytest.fixture
async def client(app_factory):
    app, backend, models_client, downloader = app_factory()
    async with LifespanManager(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as http_client:
            http_client.app = app  # type: ignore[attr-defined]
            http_client.backend = backend  # type: ignore[attr-defined]
            http_client.models_client = models_client  # type: ignore[attr-defined]
            http_client.downloader = downloader  # type: ignore[attr-defined]
            yield http_client
