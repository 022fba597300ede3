"""Tests covering the call session lifecycle, races and cleanup."""

import asyncio

import pytest

from peercall.client import CallBusyError, CallState, CallStateError, CallStateMachine

OFFER = {"type": "offer", "sdp": "remote-offer"}
ANSWER = {"type": "answer", "sdp": "remote-answer"}


async def _yield(times: int = 5) -> None:
    for _ in range(times):
        await asyncio.sleep(0)


async def _active_caller(machine: CallStateMachine) -> None:
    await machine.start_call("bob")
    await machine.on_call_accepted(ANSWER)
    assert machine.state == CallState.ACTIVE


def _all_tracks(engine) -> list:
    tracks = []
    for stream in engine.captured + engine.screens:
        tracks.extend(stream.tracks)
    return tracks


# ------------------------------------------------------------
# Outbound call
# ------------------------------------------------------------

async def test_start_call_sends_offer_and_enters_offering(alice, engine, signaling) -> None:
    await alice.start_call("bob")

    assert alice.state == CallState.OFFERING
    assert signaling.events("call-user") == [
        {"targetName": "bob", "offer": {"type": "offer", "sdp": "offer-sdp"}, "callerName": "alice"}
    ]
    handle = engine.handles[0]
    assert [t.kind for t in handle.tracks] == ["audio", "video"]
    assert handle.local_description == {"type": "offer", "sdp": "offer-sdp"}


async def test_answer_moves_offering_to_active(alice, engine, transitions) -> None:
    await alice.start_call("bob")
    await alice.on_call_accepted(ANSWER)

    assert alice.state == CallState.ACTIVE
    assert engine.handles[0].remote_description == ANSWER
    assert transitions == [
        (CallState.IDLE, CallState.OFFERING),
        (CallState.OFFERING, CallState.ACTIVE),
    ]


async def test_answer_without_offering_session_is_ignored(alice, engine) -> None:
    await alice.on_call_accepted(ANSWER)

    assert alice.state == CallState.IDLE
    assert engine.handles == []


async def test_duplicate_answer_is_applied_once(alice, engine) -> None:
    await _active_caller(alice)
    await alice.on_call_accepted(ANSWER)

    assert engine.handles[0].remote_description_calls == 1
    assert alice.state == CallState.ACTIVE


async def test_start_call_while_busy_is_rejected(alice, engine) -> None:
    await alice.start_call("bob")

    with pytest.raises(CallBusyError):
        await alice.start_call("carol")

    assert alice.session.remote_name == "bob"
    assert len(engine.handles) == 1


@pytest.mark.parametrize("name", ["", "alice"])
async def test_start_call_requires_other_user(alice, name) -> None:
    with pytest.raises(ValueError):
        await alice.start_call(name)
    assert alice.state == CallState.IDLE


async def test_call_to_offline_user_stays_offering(alice, signaling) -> None:
    await alice.start_call("carol")
    await _yield()

    # the relay drops the offer, no answer ever arrives and no timeout exists
    assert alice.state == CallState.OFFERING
    assert alice.session.remote_name == "carol"


async def test_media_failure_returns_to_idle(alice, engine, signaling) -> None:
    engine.fail_capture = True

    await alice.start_call("bob")

    assert alice.state == CallState.IDLE
    assert alice.session is None
    assert signaling.emitted == []
    assert engine.handles == []


async def test_ending_during_media_acquisition_releases_late_tracks(alice, engine, signaling) -> None:
    engine.capture_gate = asyncio.Event()
    task = asyncio.create_task(alice.start_call("bob"))
    await _yield()
    assert alice.state == CallState.OFFERING

    await alice.end_call()
    assert alice.state == CallState.IDLE

    engine.capture_gate.set()
    await task

    assert alice.state == CallState.IDLE
    assert engine.handles == []
    assert signaling.events("call-user") == []
    assert all(track.stopped == 1 for track in _all_tracks(engine))


# ------------------------------------------------------------
# Inbound call
# ------------------------------------------------------------

async def test_incoming_call_rings_then_accept_sends_answer(alice, engine, signaling) -> None:
    await alice.on_incoming_call(OFFER, "bob")
    assert alice.state == CallState.RINGING
    assert engine.handles == []

    await alice.accept()

    assert alice.state == CallState.ACTIVE
    handle = engine.handles[0]
    assert handle.remote_description == OFFER
    assert handle.local_description == {"type": "answer", "sdp": "answer-sdp"}
    assert signaling.events("call-accepted") == [
        {"targetName": "bob", "answer": {"type": "answer", "sdp": "answer-sdp"}}
    ]


async def test_reject_returns_to_idle_and_sends_nothing(alice, engine, signaling) -> None:
    await alice.on_incoming_call(OFFER, "bob")
    await alice.reject()

    assert alice.state == CallState.IDLE
    assert signaling.emitted == []
    assert engine.captured == []


async def test_end_call_while_ringing_behaves_as_reject(alice, signaling) -> None:
    await alice.on_incoming_call(OFFER, "bob")
    await alice.end_call()

    assert alice.state == CallState.IDLE
    assert signaling.emitted == []


async def test_ringing_hook_decides_immediately(engine, signaling) -> None:
    machine = CallStateMachine("alice", engine, signaling, on_ringing=lambda caller: caller == "bob")

    await machine.handle_message("incoming-call", {"offer": OFFER, "callerUserId": "bob"})
    assert machine.state == CallState.ACTIVE
    await machine.end_call()

    await machine.handle_message("incoming-call", {"offer": OFFER, "callerUserId": "mallory"})
    assert machine.state == CallState.IDLE


async def test_incoming_call_while_busy_is_ignored(alice, signaling) -> None:
    await _active_caller(alice)

    await alice.on_incoming_call(OFFER, "carol")

    assert alice.state == CallState.ACTIVE
    assert alice.session.remote_name == "bob"


async def test_accept_or_reject_without_ringing_raises(alice) -> None:
    with pytest.raises(CallStateError):
        await alice.accept()
    with pytest.raises(CallStateError):
        await alice.reject()


async def test_second_accept_is_rejected_while_first_is_in_progress(alice, engine, signaling) -> None:
    engine.remote_description_gate = asyncio.Event()
    await alice.on_incoming_call(OFFER, "bob")

    first = asyncio.create_task(alice.accept())
    await _yield()
    with pytest.raises(CallStateError):
        await alice.accept()

    engine.remote_description_gate.set()
    await first
    assert alice.state == CallState.ACTIVE
    assert len(engine.handles) == 1
    assert len(engine.captured) == 1
    assert len(signaling.events("call-accepted")) == 1

    await alice.end_call()
    assert engine.handles[0].closed == 1
    assert all(track.stopped == 1 for track in _all_tracks(engine))


async def test_ringing_hook_accept_after_ui_accept_opens_one_session(engine, signaling) -> None:
    decide = asyncio.Event()

    async def on_ringing(caller_name):
        await decide.wait()
        return True

    machine = CallStateMachine("alice", engine, signaling, on_ringing=on_ringing)
    ringing = asyncio.create_task(machine.on_incoming_call(OFFER, "bob"))
    await _yield()
    assert machine.state == CallState.RINGING

    engine.remote_description_gate = asyncio.Event()
    ui_accept = asyncio.create_task(machine.accept())
    await _yield()
    decide.set()
    await ringing

    engine.remote_description_gate.set()
    await ui_accept
    assert machine.state == CallState.ACTIVE
    assert len(engine.handles) == 1
    assert len(engine.captured) == 1


async def test_remote_end_while_ringing_dismisses_call(alice) -> None:
    await alice.on_incoming_call(OFFER, "bob")
    await alice.on_call_ended()

    assert alice.state == CallState.IDLE
    with pytest.raises(CallStateError):
        await alice.accept()


# ------------------------------------------------------------
# ICE candidates
# ------------------------------------------------------------

async def test_early_candidates_are_queued_until_answer(alice, engine) -> None:
    await alice.start_call("bob")
    await alice.on_remote_candidate({"candidate": "c1"})
    await alice.on_remote_candidate({"candidate": "c2"})

    handle = engine.handles[0]
    assert handle.candidates == []

    await alice.on_call_accepted(ANSWER)
    assert handle.candidates == [{"candidate": "c1"}, {"candidate": "c2"}]

    await alice.on_remote_candidate({"candidate": "c3"})
    assert handle.candidates[-1] == {"candidate": "c3"}


async def test_candidates_received_while_ringing_are_applied_on_accept(alice, engine) -> None:
    await alice.on_incoming_call(OFFER, "bob")
    await alice.on_remote_candidate({"candidate": "c1"})

    await alice.accept()

    assert engine.handles[0].candidates == [{"candidate": "c1"}]


async def test_candidate_while_idle_is_ignored(alice, engine) -> None:
    await alice.on_remote_candidate({"candidate": "c1"})
    assert alice.state == CallState.IDLE


async def test_candidate_failure_does_not_end_call(alice, engine) -> None:
    await _active_caller(alice)

    await alice.on_remote_candidate("bad-candidate")
    await alice.on_remote_candidate({"candidate": "good"})

    assert alice.state == CallState.ACTIVE
    assert engine.handles[0].candidates == [{"candidate": "good"}]


async def test_local_candidates_are_sent_to_remote_name(alice, engine, signaling) -> None:
    await alice.start_call("bob")

    await engine.handles[0].candidate_callback({"candidate": "local-1"})

    assert signaling.events("ice-candidate") == [{"targetName": "bob", "candidate": {"candidate": "local-1"}}]


# ------------------------------------------------------------
# Screen sharing
# ------------------------------------------------------------

async def test_toggle_screen_share_twice_restores_camera(alice, engine, signaling) -> None:
    await _active_caller(alice)
    handle = engine.handles[0]
    camera = handle.outgoing["video"]
    emitted_before = list(signaling.emitted)

    await alice.toggle_screen_share()
    assert alice.state == CallState.SCREEN_SHARING
    screen_track = engine.screens[0].tracks[0]
    assert handle.outgoing["video"] is screen_track

    await alice.toggle_screen_share()
    assert alice.state == CallState.ACTIVE
    assert handle.outgoing["video"] is camera
    assert screen_track.stopped == 1
    assert camera.stopped == 0
    # track replacement, no new offer/answer cycle
    assert signaling.emitted == emitted_before
    assert handle.remote_description_calls == 1


async def test_external_stop_reverts_screen_share_once(alice, engine) -> None:
    await _active_caller(alice)
    handle = engine.handles[0]
    camera = handle.outgoing["video"]

    await alice.toggle_screen_share()
    screen_track = engine.screens[0].tracks[0]
    ended = engine.ended_callbacks[id(screen_track)]

    await ended()
    assert alice.state == CallState.ACTIVE
    assert handle.outgoing["video"] is camera

    # a second ended notification must not release the track again
    await ended()
    assert screen_track.stopped == 1


async def test_screen_ending_during_track_swap_restores_camera(alice, engine) -> None:
    await _active_caller(alice)
    handle = engine.handles[0]
    camera = handle.outgoing["video"]

    engine.replace_gate = asyncio.Event()
    toggle = asyncio.create_task(alice.toggle_screen_share())
    await _yield()
    screen_track = engine.screens[0].tracks[0]
    stop = asyncio.create_task(engine.ended_callbacks[id(screen_track)]())
    await _yield()

    engine.replace_gate.set()
    await toggle
    await stop

    assert alice.state == CallState.ACTIVE
    assert alice.session.screen_stream is None
    assert handle.outgoing["video"] is camera
    assert screen_track.stopped == 1


async def test_screen_capture_failure_keeps_call_active(alice, engine) -> None:
    await _active_caller(alice)
    engine.fail_screen = True

    await alice.toggle_screen_share()

    assert alice.state == CallState.ACTIVE


async def test_toggle_screen_share_outside_call_raises(alice) -> None:
    with pytest.raises(CallStateError):
        await alice.toggle_screen_share()

    await alice.start_call("bob")
    with pytest.raises(CallStateError):
        await alice.toggle_screen_share()


# ------------------------------------------------------------
# Teardown
# ------------------------------------------------------------

async def test_remote_end_releases_everything(alice, engine, signaling, transitions) -> None:
    await _active_caller(alice)
    await alice.toggle_screen_share()
    emitted_before = list(signaling.emitted)

    await alice.handle_message("call-ended")

    assert alice.state == CallState.IDLE
    assert alice.session is None
    assert transitions[-2:] == [
        (CallState.SCREEN_SHARING, CallState.ENDED),
        (CallState.ENDED, CallState.IDLE),
    ]
    assert engine.handles[0].closed == 1
    assert all(track.stopped == 1 for track in _all_tracks(engine))
    assert signaling.emitted == emitted_before


async def test_active_to_ended_to_idle_on_remote_end(alice, transitions) -> None:
    await _active_caller(alice)

    await alice.on_call_ended()

    assert transitions[-2:] == [
        (CallState.ACTIVE, CallState.ENDED),
        (CallState.ENDED, CallState.IDLE),
    ]


async def test_local_end_notifies_remote(alice, engine, signaling) -> None:
    await _active_caller(alice)

    await alice.end_call()

    assert alice.state == CallState.IDLE
    assert signaling.events("end-call") == [{"targetName": "bob"}]
    assert engine.handles[0].closed == 1


async def test_end_call_when_idle_is_noop(alice, signaling) -> None:
    await alice.end_call()
    assert signaling.emitted == []


async def test_cancel_while_offering_notifies_callee(alice, engine, signaling) -> None:
    await alice.start_call("bob")

    await alice.end_call()

    assert signaling.events("end-call") == [{"targetName": "bob"}]
    assert engine.handles[0].closed == 1


async def test_disconnect_tears_down_without_sending(alice, engine, signaling) -> None:
    await alice.start_call("bob")
    emitted_before = list(signaling.emitted)

    await alice.on_disconnected()

    assert alice.state == CallState.IDLE
    assert signaling.emitted == emitted_before
    assert all(track.stopped == 1 for track in _all_tracks(engine))


async def test_new_offer_during_slow_teardown_rings(alice, engine) -> None:
    await _active_caller(alice)
    engine.close_gate = asyncio.Event()

    ending = asyncio.create_task(alice.handle_message("call-ended"))
    await _yield()
    assert alice.state == CallState.IDLE

    ringing = asyncio.create_task(
        alice.handle_message("incoming-call", {"offer": OFFER, "callerUserId": "bob"})
    )
    await _yield()
    assert alice.state == CallState.RINGING

    engine.close_gate.set()
    await ending
    await ringing
    assert alice.state == CallState.RINGING
    assert alice.session.remote_offer == OFFER
    assert engine.handles[0].closed == 1


async def test_new_call_after_end_uses_fresh_session(alice, engine) -> None:
    await _active_caller(alice)
    first = alice.session
    await alice.end_call()

    await alice.start_call("carol")

    assert alice.session is not first
    assert alice.session.remote_name == "carol"
    assert len(engine.handles) == 2


# ------------------------------------------------------------
# Presence
# ------------------------------------------------------------

async def test_users_update_excludes_own_name(alice) -> None:
    await alice.handle_message("users-update", {"names": ["alice", "bob", "carol"]})

    assert alice.presence.names == ["bob", "carol"]
    assert "alice" not in alice.presence
