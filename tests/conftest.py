"""Shared fakes for registry, relay and call state machine tests."""

import asyncio
import uuid
from typing import Any, Dict, List, Optional

import pytest

from peercall.client.media import LocalStream, MediaAcquisitionError, MediaEngine
from peercall.client.state_machine import CallStateMachine


class FakeChannel:
    """Server-side channel that records every frame sent to it."""

    def __init__(self, label: str = ""):
        self.channel_id = str(uuid.uuid4())
        self.label = label
        self.sent: List[dict] = []
        self.fail = False

    async def send(self, message: dict) -> None:
        if self.fail:
            raise ConnectionError("channel closed")
        self.sent.append(message)

    def of_type(self, event: str) -> List[dict]:
        return [m for m in self.sent if m["type"] == event]


class FakeTrack:
    def __init__(self, kind: str, label: str = ""):
        self.kind = kind
        self.label = label
        self.stopped = 0

    def __repr__(self) -> str:
        return f"FakeTrack({self.kind}, {self.label})"


class FakeHandle:
    def __init__(self):
        self.tracks: List[FakeTrack] = []
        self.outgoing: Dict[str, FakeTrack] = {}
        self.local_description = None
        self.remote_description = None
        self.candidates: List[Any] = []
        self.remote_description_calls = 0
        self.track_callback = None
        self.candidate_callback = None
        self.closed = 0


class FakeMediaEngine(MediaEngine):
    """In-memory media engine.

    ``add_candidate`` fails when no remote description is set, which is what a
    real engine does with an early candidate.
    """

    def __init__(self):
        self.handles: List[FakeHandle] = []
        self.captured: List[LocalStream] = []
        self.screens: List[LocalStream] = []
        self.ended_callbacks: Dict[int, Any] = {}
        self.capture_gate: Optional[asyncio.Event] = None
        self.remote_description_gate: Optional[asyncio.Event] = None
        self.replace_gate: Optional[asyncio.Event] = None
        self.close_gate: Optional[asyncio.Event] = None
        self.fail_capture = False
        self.fail_screen = False

    async def capture_local_media(self, kinds) -> LocalStream:
        if self.capture_gate is not None:
            await self.capture_gate.wait()
        if self.fail_capture:
            raise MediaAcquisitionError("permission denied")
        stream = LocalStream(tracks=[FakeTrack("audio", "mic"), FakeTrack("video", "camera")])
        self.captured.append(stream)
        return stream

    async def capture_screen(self) -> LocalStream:
        if self.fail_screen:
            raise MediaAcquisitionError("screen capture denied")
        stream = LocalStream(tracks=[FakeTrack("video", "screen")])
        self.screens.append(stream)
        return stream

    def create_session(self) -> FakeHandle:
        handle = FakeHandle()
        self.handles.append(handle)
        return handle

    def add_track(self, handle, track) -> None:
        handle.tracks.append(track)
        handle.outgoing[track.kind] = track

    async def create_offer(self, handle):
        return {"type": "offer", "sdp": "offer-sdp"}

    async def create_answer(self, handle, remote_offer):
        return {"type": "answer", "sdp": "answer-sdp"}

    async def set_local_description(self, handle, description):
        handle.local_description = description
        return description

    async def set_remote_description(self, handle, description):
        if self.remote_description_gate is not None:
            await self.remote_description_gate.wait()
        handle.remote_description_calls += 1
        handle.remote_description = description

    async def add_candidate(self, handle, candidate):
        if handle.remote_description is None:
            raise RuntimeError("remote description not set")
        if candidate == "bad-candidate":
            raise ValueError("unparsable candidate")
        handle.candidates.append(candidate)

    async def replace_outgoing_track(self, handle, track):
        if self.replace_gate is not None:
            await self.replace_gate.wait()
        handle.outgoing[track.kind] = track

    def on_inbound_track(self, handle, callback):
        handle.track_callback = callback

    def on_local_candidate(self, handle, callback):
        handle.candidate_callback = callback

    def on_track_ended(self, track, callback):
        self.ended_callbacks[id(track)] = callback

    async def close(self, handle):
        if self.close_gate is not None:
            await self.close_gate.wait()
        handle.closed += 1

    def stop_track(self, track):
        track.stopped += 1


class FakeSignaling:
    """Client-side channel that records emitted events."""

    def __init__(self):
        self.emitted: List[tuple] = []

    async def emit(self, event: str, data: Any = None) -> None:
        self.emitted.append((event, data))

    def events(self, event: str) -> List[Any]:
        return [data for name, data in self.emitted if name == event]


@pytest.fixture
def engine() -> FakeMediaEngine:
    return FakeMediaEngine()


@pytest.fixture
def signaling() -> FakeSignaling:
    return FakeSignaling()


@pytest.fixture
def transitions() -> list:
    return []


@pytest.fixture
def alice(engine, signaling, transitions) -> CallStateMachine:
    return CallStateMachine(
        "alice",
        engine,
        signaling,
        on_state_change=lambda old, new: transitions.append((old, new)),
    )
