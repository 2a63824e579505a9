import asyncio

import httpx
import pytest
import respx
from httpx import Response

from localinfer.errors import DownloadCancelled, ModelValidationError
from localinfer.events import MODEL_REGISTERED, StateEventBus
from localinfer.model_downloads import HttpModelDownloader, ModelDownloadReconciler, validate_model_file
from localinfer.schemas import ModelDownloadInfo, RegisteredModel, RequiredModelManifestEntry
from tests.fakes import GGUF_BYTES, FakeDownloader, FakeModelsClient, FakeSettingsService


def _entry(name: str, file_name: str, is_default: bool = False) -> RequiredModelManifestEntry:
    return RequiredModelManifestEntry(
        name=name, file_name=file_name, url=f"http://models.test/{file_name}", is_default=is_default
    )


def _reconciler(tmp_path, entries, **kwargs):
    settings_service = FakeSettingsService(root_folder=str(tmp_path))
    client = FakeModelsClient(entries, fail_manifest=kwargs.pop("fail_manifest", False))
    downloader = kwargs.pop("downloader", None) or FakeDownloader()
    reconciler = ModelDownloadReconciler(settings_service, client, downloader, **kwargs)
    return reconciler, settings_service, downloader


@pytest.mark.asyncio
async def test_only_missing_files_are_reported_and_present_files_are_untouched(tmp_path):
    models_dir = tmp_path / "models"
    models_dir.mkdir()
    (models_dir / "good.gguf").write_bytes(GGUF_BYTES)
    (models_dir / "BROKEN.GGUF").write_bytes(b"not a model")
    reconciler, _, _ = _reconciler(
        tmp_path,
        [_entry("good", "good.gguf"), _entry("broken", "broken.gguf"), _entry("new", "new.gguf")],
    )

    missing = await reconciler.get_required_downloads()

    assert [m.name for m in missing] == ["new"]
    assert (models_dir / "BROKEN.GGUF").read_bytes() == b"not a model"
    assert (models_dir / "good.gguf").exists()


@pytest.mark.asyncio
async def test_model_folder_is_created_under_root(tmp_path):
    reconciler, settings_service, _ = _reconciler(tmp_path, [_entry("a", "a.gguf")])
    settings_service.settings.model.model_folder_path = "weights"

    missing = await reconciler.get_required_downloads()

    assert (tmp_path / "weights").is_dir()
    assert [m.file_name for m in missing] == ["a.gguf"]


@pytest.mark.asyncio
async def test_manifest_failure_returns_empty_list(tmp_path):
    reconciler, _, _ = _reconciler(tmp_path, [_entry("a", "a.gguf")], fail_manifest=True)
    assert await reconciler.get_required_downloads() == []


@pytest.mark.asyncio
async def test_download_registers_model_and_clears_other_defaults(tmp_path):
    bus = StateEventBus()
    queue = await bus.subscribe()
    reconciler, settings_service, downloader = _reconciler(tmp_path, [], bus=bus)
    settings_service.settings.model.models.append(
        RegisteredModel(name="old", file_name="old.gguf", is_default=True)
    )
    info = ModelDownloadInfo(
        name="new", file_name="new.gguf", url="http://models.test/new.gguf", is_default=True, has_reasoning=True
    )
    progress = []

    registered = await reconciler.download_model(info, on_progress=lambda *args: progress.append(args))

    assert registered is True
    models = settings_service.settings.model.models
    assert [(m.name, m.is_default, m.enabled) for m in models] == [("old", False, True), ("new", True, True)]
    assert models[-1].has_reasoning is True
    assert settings_service.save_calls == 1
    assert downloader.calls == [(info.url, tmp_path / "models" / "new.gguf")]
    assert progress[-1][0] == 1.0
    event = queue.get_nowait()
    assert event["event_type"] == MODEL_REGISTERED
    assert event["payload"]["name"] == "new"


@pytest.mark.asyncio
async def test_download_of_already_registered_model_does_not_duplicate(tmp_path):
    reconciler, settings_service, _ = _reconciler(tmp_path, [])
    settings_service.settings.model.models.append(RegisteredModel(name="same", file_name="same.gguf"))
    info = ModelDownloadInfo(name="same", file_name="same.gguf", url="http://models.test/same.gguf")

    assert await reconciler.download_model(info) is False
    assert len(settings_service.settings.model.models) == 1
    assert settings_service.save_calls == 0


@pytest.mark.asyncio
async def test_failed_download_registers_nothing(tmp_path):
    downloader = FakeDownloader(fail=DownloadCancelled("stop"))
    reconciler, settings_service, _ = _reconciler(tmp_path, [], downloader=downloader)
    info = ModelDownloadInfo(name="x", file_name="x.gguf", url="http://models.test/x.gguf")

    with pytest.raises(DownloadCancelled):
        await reconciler.download_model(info)
    assert settings_service.settings.model.models == []


@pytest.mark.asyncio
async def test_register_existing_models_repairs_unregistered_files(tmp_path):
    models_dir = tmp_path / "models"
    models_dir.mkdir()
    (models_dir / "orphan.gguf").write_bytes(GGUF_BYTES)
    (models_dir / "bad.gguf").write_bytes(b"junk")
    reconciler, settings_service, _ = _reconciler(
        tmp_path,
        [_entry("orphan", "orphan.gguf", is_default=True), _entry("bad", "bad.gguf"), _entry("gone", "gone.gguf")],
    )

    missing_before = await reconciler.get_required_downloads()
    assert settings_service.settings.model.models == []

    registered = await reconciler.register_existing_models()

    assert registered == ["orphan"]
    assert [m.name for m in settings_service.settings.model.models] == ["orphan"]
    assert [m.name for m in missing_before] == ["gone"]
    assert await reconciler.register_existing_models() == []


def test_validate_model_file(tmp_path):
    good = tmp_path / "m.gguf"
    good.write_bytes(GGUF_BYTES)
    validate_model_file(good)

    empty = tmp_path / "e.bin"
    empty.write_bytes(b"")
    with pytest.raises(ModelValidationError):
        validate_model_file(empty)

    wrong = tmp_path / "w.gguf"
    wrong.write_bytes(b"ABCDEFGH")
    with pytest.raises(ModelValidationError):
        validate_model_file(wrong)

    other = tmp_path / "tokenizer.json"
    other.write_text("{}")
    validate_model_file(other)


@pytest.mark.asyncio
async def test_http_downloader_writes_file_and_reports_progress(tmp_path):
    downloader = HttpModelDownloader(chunk_size=8)
    destination = tmp_path / "models" / "m.gguf"
    body = GGUF_BYTES * 4
    progress = []
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            respx_mock.get("http://models.test/m.gguf").mock(
                return_value=Response(200, content=body, headers={"Content-Length": str(len(body))})
            )
            result = await downloader.download(
                "http://models.test/m.gguf", destination, on_progress=lambda *args: progress.append(args)
            )
    finally:
        await downloader.close()

    assert result == destination
    assert destination.read_bytes() == body
    assert not (tmp_path / "models" / "m.gguf.part").exists()
    assert progress[-1] == (1.0, len(body), len(body))


@pytest.mark.asyncio
async def test_http_downloader_cancel_leaves_no_file(tmp_path):
    downloader = HttpModelDownloader(chunk_size=8)
    destination = tmp_path / "m.gguf"
    cancel = asyncio.Event()
    cancel.set()
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            respx_mock.get("http://models.test/m.gguf").mock(return_value=Response(200, content=GGUF_BYTES))
            with pytest.raises(DownloadCancelled):
                await downloader.download("http://models.test/m.gguf", destination, cancel_event=cancel)
    finally:
        await downloader.close()

    assert not destination.exists()
    assert not (tmp_path / "m.gguf.part").exists()


@pytest.mark.asyncio
async def test_http_downloader_http_error_leaves_no_file(tmp_path):
    downloader = HttpModelDownloader()
    destination = tmp_path / "m.gguf"
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            respx_mock.get("http://models.test/m.gguf").mock(return_value=Response(404))
            with pytest.raises(httpx.HTTPStatusError):
                await downloader.download("http://models.test/m.gguf", destination)
    finally:
        await downloader.close()

    assert not destination.exists()
