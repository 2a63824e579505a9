import asyncio

import pytest

from localinfer.host_registration import LOCAL_REGION, HostRegistrationGuard
from localinfer.schemas import AuthState
from tests.fakes import FakeAuthProvider, FakeModelsClient, FakeSettingsService


def _guard(auth: AuthState, **client_kwargs):
    settings_service = FakeSettingsService()
    client = FakeModelsClient(**client_kwargs)
    guard = HostRegistrationGuard(settings_service, FakeAuthProvider(auth), client)
    return guard, settings_service, client


@pytest.mark.asyncio
async def test_noop_when_not_authenticated():
    guard, settings_service, client = _guard(AuthState())
    assert await guard.ensure_registered() is False
    assert client.register_calls == []
    assert settings_service.save_calls == 0


@pytest.mark.asyncio
async def test_noop_when_secret_already_stored():
    guard, settings_service, client = _guard(AuthState(client_key="key"))
    settings_service.settings.host.secret_key = "existing"
    assert await guard.ensure_registered() is False
    assert client.register_calls == []


@pytest.mark.asyncio
async def test_registers_once_and_persists_identity():
    guard, settings_service, client = _guard(AuthState(client_key="key"))

    assert await guard.ensure_registered() is True
    assert await guard.ensure_registered() is False

    assert len(client.register_calls) == 1
    assert client.register_calls[0].region == LOCAL_REGION == "local"
    assert client.register_calls[0].machine_name
    assert settings_service.settings.host.host_id == "host-1"
    assert settings_service.settings.host.secret_key == "secret-1"
    assert settings_service.save_calls == 1


@pytest.mark.asyncio
async def test_concurrent_callers_register_once():
    guard, _, client = _guard(AuthState(client_key="key"), register_delay=0.05)

    results = await asyncio.gather(*(guard.ensure_registered() for _ in range(5)))

    assert sorted(results) == [False, False, False, False, True]
    assert len(client.register_calls) == 1


@pytest.mark.asyncio
async def test_failure_is_swallowed_and_retried_later():
    guard, settings_service, client = _guard(AuthState(client_key="key"), fail_register=True)

    assert await guard.ensure_registered() is False
    assert settings_service.settings.host.secret_key == ""

    client.fail_register = False
    assert await guard.ensure_registered() is True
    assert len(client.register_calls) == 2
