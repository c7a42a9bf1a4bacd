from __future__ import annotations

import asyncio
import logging

import pytest

from conftest import FakeHost, settle
from voice_client.cache import keys
from voice_client.cache.queries import QueryCache
from voice_client.cache.resources import Resources
from voice_client.core.errors import HostCallError
from voice_client.runtime.controller import ClientController
from voice_client.runtime.event_bridge import EventBridge
from voice_client.services.api import HostAPI
from voice_client.services.schemas import ListeningStatus, event_names
from voice_client.state.app_state import AppState
from voice_client.state.signals import TransientSignalStore


METADATA = {"duration_secs": 2.5, "file_path": "/tmp/rec-1.wav", "sample_count": 40000}


def make_bridge(host: FakeHost, *, decay_ms: int = 100) -> EventBridge:
    return EventBridge(
        host,
        AppState(),
        TransientSignalStore(wake_word_decay_ms=decay_ms, audio_level_interval_ms=10),
        QueryCache(),
    )


@pytest.mark.asyncio
async def test_start_subscribes_every_event(host: FakeHost):
    bridge = make_bridge(host)
    await bridge.start()
    assert "recording_started" in host.listeners
    assert "audio-level" in host.listeners
    assert "window_contexts_updated" in host.listeners
    bridge.stop()
    assert host.listener_count() == 0


@pytest.mark.asyncio
async def test_stop_during_subscribe_releases_late_subscription(host: FakeHost):
    host.listen_delay = 0.01
    bridge = make_bridge(host)
    task = asyncio.create_task(bridge.start())
    await asyncio.sleep(0.005)
    bridge.stop()
    await task
    assert host.listener_count() == 0
    assert not bridge.is_active


@pytest.mark.asyncio
async def test_failed_subscription_releases_acquired_ones(host: FakeHost):
    host.listen_failures.add(event_names()[-1])
    bridge = make_bridge(host)

    with pytest.raises(HostCallError):
        await bridge.start()
    assert host.listener_count() == 0
    assert not bridge.is_active

    # The query seed listeners are gone as well.
    bridge.cache.set_data(keys.LISTENING_STATUS, ListeningStatus(enabled=True, active=True, mic_available=True))
    assert not bridge.state.listening.is_listening


@pytest.mark.asyncio
async def test_wake_word_pulse_restarts_on_each_detection(host: FakeHost):
    bridge = make_bridge(host, decay_ms=100)
    await bridge.start()

    host.emit("wake_word_detected", {"confidence": 0.9})
    assert bridge.signals.wake_word_detected
    await asyncio.sleep(0.06)
    host.emit("wake_word_detected", None)
    await asyncio.sleep(0.06)
    # 120 ms after the first detection but only 60 ms after the second one.
    assert bridge.signals.wake_word_detected
    await asyncio.sleep(0.1)
    assert not bridge.signals.wake_word_detected
    bridge.stop()


@pytest.mark.asyncio
async def test_recording_started_clears_cancellation(host: FakeHost):
    bridge = make_bridge(host)
    await bridge.start()
    host.emit("recording_started", None)
    host.emit("recording_cancelled", {"reason": "double-tap-escape"})
    assert bridge.state.recording.was_cancelled
    assert bridge.state.recording.cancel_reason == "double-tap-escape"
    assert not bridge.state.recording.is_recording

    host.emit("recording_started", {"timestamp": "2024-01-01T00:00:00Z"})
    recording = bridge.state.recording
    assert recording.is_recording
    assert not recording.was_cancelled
    assert recording.cancel_reason is None
    assert recording.error is None
    bridge.stop()


@pytest.mark.asyncio
async def test_recording_error_keeps_recording_flag(host: FakeHost):
    bridge = make_bridge(host)
    await bridge.start()
    host.emit("recording_started")
    host.emit("recording_error", {"message": "device lost"})
    assert bridge.state.recording.is_recording
    assert bridge.state.recording.error == "device lost"
    bridge.stop()


@pytest.mark.asyncio
async def test_stop_recording_response_does_not_override_event(host: FakeHost):
    bridge = make_bridge(host)
    api = HostAPI(host)
    controller = ClientController(api, Resources(bridge.cache, api), bridge.signals)
    await bridge.start()

    host.emit("recording_started")
    host.emit("recording_stopped", {"metadata": METADATA})
    result = await controller.stop_recording()

    assert result is None
    recording = bridge.state.recording
    assert not recording.is_recording
    assert recording.last_recording is not None
    assert recording.last_recording.file_path == "/tmp/rec-1.wav"
    assert recording.last_recording.duration_secs == 2.5
    bridge.stop()


@pytest.mark.asyncio
async def test_listening_events(host: FakeHost):
    bridge = make_bridge(host)
    await bridge.start()
    host.emit("listening_unavailable", {"reason": "No microphone"})
    listening = bridge.state.listening
    assert not listening.is_listening
    assert not listening.is_mic_available
    assert listening.error == "No microphone"

    host.emit("listening_started")
    listening = bridge.state.listening
    assert listening.is_listening and listening.is_mic_available
    assert listening.error is None

    host.emit("listening_stopped")
    assert not bridge.state.listening.is_listening
    bridge.stop()


@pytest.mark.asyncio
async def test_transcription_lifecycle(host: FakeHost):
    bridge = make_bridge(host)
    await bridge.start()
    host.emit("transcription_error", {"error": "model missing"})
    assert bridge.state.transcription.error == "model missing"

    host.emit("transcription_started")
    transcription = bridge.state.transcription
    assert transcription.is_transcribing
    assert transcription.error is None

    host.emit("transcription_completed", {"text": "hello world", "duration_ms": 320})
    transcription = bridge.state.transcription
    assert not transcription.is_transcribing
    assert transcription.transcribed_text == "hello world"
    assert transcription.duration_ms == 320
    bridge.stop()


@pytest.mark.asyncio
async def test_download_progress_then_completion(host: FakeHost):
    bridge = make_bridge(host)
    await bridge.start()
    host.emit("model_file_download_progress", {"model_type": "tdt", "percent": 42, "file_name": "encoder.onnx"})
    status = bridge.signals.model_status("tdt")
    assert status.download_state == "downloading"
    assert status.progress == 42

    host.emit("model_download_completed", {"model_type": "tdt", "model_path": "/models/tdt"})
    status = bridge.signals.model_status("tdt")
    assert status.is_available
    assert status.download_state == "completed"
    assert status.progress == 100
    assert status.error is None
    bridge.stop()


@pytest.mark.asyncio
async def test_progress_for_untracked_model_is_ignored(host: FakeHost):
    bridge = make_bridge(host)
    await bridge.start()
    before = bridge.signals.models
    assert bridge.handle("model_file_download_progress", {"model_type": "whisper", "percent": 10})
    assert bridge.signals.models == before
    assert not bridge.signals.is_tracked("whisper")
    bridge.stop()


@pytest.mark.asyncio
async def test_invalid_payload_is_logged_and_dropped(host: FakeHost, caplog):
    bridge = make_bridge(host)
    await bridge.start()
    with caplog.at_level(logging.WARNING, logger="voice_client.event_bridge"):
        host.emit("recording_stopped", {"metadata": {"file_path": 12}})
        host.emit("model_file_download_progress", {"model_type": "tdt", "percent": 140})
    assert bridge.state.recording.last_recording is None
    assert bridge.signals.model_status("tdt").download_state == "idle"
    assert sum("Evenement invalide" in r.getMessage() for r in caplog.records) == 2
    bridge.stop()


@pytest.mark.asyncio
async def test_handler_failure_does_not_break_later_events(host: FakeHost, monkeypatch, caplog):
    bridge = make_bridge(host)
    await bridge.start()

    def _boom(window):
        raise RuntimeError("boom")

    monkeypatch.setattr(bridge.signals, "set_active_window", _boom)
    with caplog.at_level(logging.ERROR, logger="voice_client.event_bridge"):
        assert not bridge.handle("active_window_changed", {"appName": "Slack"})
    assert any("Gestionnaire en echec" in r.getMessage() for r in caplog.records)

    host.emit("recording_started")
    assert bridge.state.recording.is_recording
    bridge.stop()


@pytest.mark.asyncio
async def test_resource_notifications_refetch_lists(host: FakeHost):
    bridge = make_bridge(host)
    resources = Resources(bridge.cache, HostAPI(host))
    resources.register_all()
    await bridge.start()
    await resources.prime()
    assert len(host.called("list_dictionary_entries")) == 1

    host.responses["list_dictionary_entries"] = [{"id": "d1", "trigger": "brb", "expansion": "be right back"}]
    host.emit("dictionary_updated")
    host.emit("transcription_completed", {"text": "ok", "duration_ms": 5})
    await settle()

    assert len(host.called("list_dictionary_entries")) == 2
    assert len(host.called("list_recordings")) == 2
    assert [e.id for e in bridge.cache.data(keys.DICTIONARY_LIST)] == ["d1"]
    bridge.stop()
    await bridge.cache.close()


@pytest.mark.asyncio
async def test_initial_query_seeds_until_first_event(host: FakeHost):
    bridge = make_bridge(host)
    resources = Resources(bridge.cache, HostAPI(host))
    resources.register_all()
    host.responses["get_listening_status"] = {"enabled": True, "active": True, "micAvailable": True}
    await bridge.start()
    await resources.prime()
    assert bridge.state.listening.is_listening

    host.emit("listening_stopped")
    await settle()
    # The refetch still reports enabled, the event stays authoritative.
    assert not bridge.state.listening.is_listening
    bridge.stop()
    await bridge.cache.close()


@pytest.mark.asyncio
async def test_overlay_mode_and_audio_level(host: FakeHost):
    bridge = make_bridge(host)
    await bridge.start()
    host.emit("overlay_mode", "compact")
    host.emit("audio-level", 10)
    host.emit("audio-level", 55.5)
    assert bridge.signals.overlay_mode == "compact"
    await asyncio.sleep(0.03)
    assert bridge.signals.audio_level == 55.5
    bridge.stop()
    bridge.signals.close()


@pytest.mark.asyncio
async def test_key_blocking_unavailable_only_logs(host: FakeHost, caplog):
    bridge = make_bridge(host)
    await bridge.start()
    with caplog.at_level(logging.WARNING, logger="voice_client.event_bridge"):
        host.emit("key_blocking_unavailable", {"reason": "accessibility permission missing"})
    assert any("accessibility permission missing" in r.getMessage() for r in caplog.records)
    assert bridge.state.recording == type(bridge.state.recording)()
    bridge.stop()
