from __future__ import annotations

import pytest

from voice_client.state.app_state import ListeningState, RecordingState, TranscriptionState
from voice_client.state.status import app_status, derive_error, derive_status


@pytest.mark.parametrize(
    "is_recording,is_transcribing,is_listening,expected",
    [
        (False, False, False, "idle"),
        (False, False, True, "listening"),
        (False, True, False, "processing"),
        (False, True, True, "processing"),
        (True, False, False, "recording"),
        (True, False, True, "recording"),
        (True, True, False, "recording"),
        (True, True, True, "recording"),
    ],
)
def test_status_priority(is_recording, is_transcribing, is_listening, expected):
    status = derive_status(
        RecordingState(is_recording=is_recording),
        TranscriptionState(is_transcribing=is_transcribing),
        ListeningState(is_listening=is_listening),
    )
    assert status == expected


def test_processing_flag_alone_is_not_a_status():
    assert derive_status(RecordingState(is_processing=True), TranscriptionState(), ListeningState()) == "idle"


def test_first_error_in_priority_order():
    assert derive_error(RecordingState(), TranscriptionState(error="t"), ListeningState(error="l")) == "t"
    assert derive_error(RecordingState(error="r"), TranscriptionState(error="t"), ListeningState()) == "r"
    assert derive_error(RecordingState(), TranscriptionState(), ListeningState()) is None


def test_snapshot_bundles_flags():
    snapshot = app_status(RecordingState(), TranscriptionState(is_transcribing=True), ListeningState(error="mic"))
    assert snapshot.status == "processing"
    assert snapshot.error == "mic"
    assert snapshot.is_transcribing and not snapshot.is_recording and not snapshot.is_listening
