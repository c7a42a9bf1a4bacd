from __future__ import annotations

import asyncio

import pytest

from conftest import FakeHost, settle
from voice_client.cache import keys
from voice_client.cache.queries import QueryCache
from voice_client.cache.resources import Resources, invalidation_policy
from voice_client.services.api import HostAPI


def test_policy_by_resource():
    assert invalidation_policy(keys.DICTIONARY) == "event"
    assert invalidation_policy(keys.WINDOW_CONTEXT_LIST) == "event"
    assert invalidation_policy(keys.COMMANDS) == "event"
    assert invalidation_policy(keys.model_status("tdt")) == "event"
    assert invalidation_policy(keys.AUDIO_DEVICES) == "explicit"
    assert invalidation_policy(keys.RUNNING_APPS) == "explicit"
    assert invalidation_policy(keys.AUDIO_MONITOR) == "explicit"


@pytest.mark.asyncio
async def test_event_covered_mutation_leaves_cache_alone(host: FakeHost):
    cache = QueryCache()
    resources = Resources(cache, HostAPI(host))
    resources.register_all()
    await resources.dictionary_entries()

    await resources.mutate(keys.DICTIONARY, lambda: resources.api.delete_dictionary_entry("d1"))
    await settle()
    assert len(host.called("list_dictionary_entries")) == 1
    assert not cache.get(keys.DICTIONARY_LIST).is_stale
    await cache.close()


@pytest.mark.asyncio
async def test_uncovered_mutation_invalidates_after_response(host: FakeHost):
    cache = QueryCache()
    resources = Resources(cache, HostAPI(host))
    resources.register_all()
    await resources.audio_devices()

    host.responses["list_audio_devices"] = [{"name": "USB Mic", "isDefault": True}]
    await resources.mutate(keys.AUDIO_DEVICES, lambda: resources.api.start_audio_monitor("USB Mic"))
    await settle()
    assert len(host.called("list_audio_devices")) == 2
    assert cache.data(keys.AUDIO_DEVICES)[0].is_default
    await cache.close()


@pytest.mark.asyncio
async def test_prime_keeps_failures_in_key_state(host: FakeHost):
    host.failures["list_commands"] = "commands store locked"
    cache = QueryCache()
    resources = Resources(cache, HostAPI(host), model_types=("tdt",))
    resources.register_all()
    await resources.prime()

    assert cache.get(keys.COMMANDS).error == "commands store locked"
    assert cache.data(keys.model_status("tdt")) is False
    assert host.called("check_parakeet_model_status") == [{"modelType": "ParakeetTDT"}]
    await cache.close()


@pytest.mark.asyncio
async def test_prime_loads_running_applications(host: FakeHost):
    host.responses["list_running_applications"] = [{"name": "Slack", "isActive": True}]
    cache = QueryCache()
    resources = Resources(cache, HostAPI(host), model_types=())
    resources.register_all()
    await resources.prime()

    assert host.called("list_running_applications") == [{}]
    assert cache.data(keys.RUNNING_APPS)[0].name == "Slack"

    cache.invalidate(keys.WINDOW_CONTEXT)
    await settle()
    assert len(host.called("list_running_applications")) == 2
    await cache.close()


@pytest.mark.asyncio
async def test_accessors_parse_host_records(host: FakeHost):
    host.responses["list_running_applications"] = [{"name": "Slack", "bundleId": "com.tinyspeck.slack", "isActive": True}]
    host.responses["list_recordings"] = [{"filePath": "/rec/1.wav", "durationSecs": 3.0, "transcription": "hi", "sizeBytes": 10}]
    host.responses["get_recording_state"] = {"state": "Processing"}
    cache = QueryCache()
    resources = Resources(cache, HostAPI(host))

    apps = await resources.running_applications()
    recordings = await resources.recordings()
    state = await resources.recording_state()
    listening = await resources.listening_status()

    assert apps[0].bundle_id == "com.tinyspeck.slack" and apps[0].is_active
    assert recordings[0].transcription == "hi"
    assert state.state == "Processing"
    assert listening.mic_available
    await cache.close()


@pytest.mark.asyncio
async def test_set_data_wins_over_older_in_flight_fetch(host: FakeHost):
    cache = QueryCache()
    resources = Resources(cache, HostAPI(host))
    pending = asyncio.create_task(resources.commands())
    await asyncio.sleep(0)
    cache.set_data(keys.COMMANDS, ["confirmed"])
    await pending
    assert cache.data(keys.COMMANDS) == ["confirmed"]
    await cache.close()
