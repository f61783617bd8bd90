"""ClientSessionController 테스트 (릴레이 이벤트 → 협상 세션)."""

import asyncio

import pytest
from aiortc import AudioStreamTrack

from conftest import FakePeerConnection, FakeRelay, ManualTimer, answer, offer, settle
from huddle.client.controller import ClientSessionController
from huddle.errors import AdmissionError
from huddle.webrtc.devices import LocalMedia
from huddle.webrtc.media import MediaTrackCoordinator
from huddle.webrtc.negotiation import NegotiationState


@pytest.fixture
async def controller(transport, media, local_tracks, pc_factory):
    controller = ClientSessionController(
        transport,
        media,
        pc_factory=pc_factory,
        sleep=ManualTimer().sleep,
    )
    media.set_local_source(local_tracks)
    yield controller
    await controller._teardown_all()


async def receive(controller: ClientSessionController, message_type: str, data: dict):
    await controller.handle_message({"type": message_type, "data": data})


async def drain(controller: ClientSessionController):
    for _ in range(3):
        for session in list(controller.negotiations.values()):
            await session.wait_idle()
        await settle()


async def admitted(controller, session_id="bbb", participants=()):
    await receive(controller, "session_id", {"session_id": session_id})
    await receive(controller, "join_accepted", {
        "session_id": session_id,
        "room_code": "ABC123",
        "participants": list(participants),
        "participant_count": len(participants) + 1,
    })


def live_sessions(controller, remote_id):
    return [pc for pc in FakePeerConnection.created if pc.remote_id == remote_id and pc.close_count == 0]


class TestJoin:
    async def test_join_resolves_with_existing_participants(self, controller, transport):
        join_task = asyncio.create_task(controller.join("ABC123", "bob"))
        await settle()
        assert transport.of("join_request") == [{"room_code": "ABC123", "identity": "bob"}]

        await admitted(controller, participants=[{"id": "aaa", "identity": "alice"}])

        assert await join_task == [{"id": "aaa", "identity": "alice"}]
        assert controller.room_code == "ABC123"
        assert controller.negotiations["aaa"].state is NegotiationState.IDLE
        assert controller.participants["aaa"].identity == "alice"

    async def test_room_full_raises_admission_error(self, controller):
        join_task = asyncio.create_task(controller.join("ABC123", "bob"))
        await settle()

        await receive(controller, "room_full", {"room_code": "ABC123", "capacity": 10})

        with pytest.raises(AdmissionError):
            await join_task
        assert controller.negotiations == {}


class TestCallFlow:
    async def test_new_arrival_gets_an_offer(self, controller, transport):
        await admitted(controller, "aaa")

        await receive(controller, "participant_joined", {"id": "bbb", "identity": "bob", "participant_count": 2})
        await drain(controller)

        assert transport.of("call_offer")[0]["to_id"] == "bbb"
        assert controller.negotiations["bbb"].state is NegotiationState.OFFER_SENT

        await receive(controller, "call_accepted", {"from_id": "bbb", "answer": answer()})
        await drain(controller)
        assert controller.negotiations["bbb"].state is NegotiationState.STABLE

    async def test_incoming_call_is_answered(self, controller, transport):
        await admitted(controller, "bbb", participants=[{"id": "aaa", "identity": "alice"}])

        await receive(controller, "incoming_call", {"from_id": "aaa", "offer": offer()})
        await drain(controller)

        assert transport.of("call_answer")[0]["to_id"] == "aaa"
        assert controller.negotiations["aaa"].state is NegotiationState.STABLE
        assert len(controller.negotiations["aaa"].pc.senders) == 2

    async def test_late_answer_is_ignored(self, controller):
        await admitted(controller, "bbb", participants=[{"id": "aaa", "identity": "alice"}])
        await receive(controller, "incoming_call", {"from_id": "aaa", "offer": offer()})
        await drain(controller)

        await receive(controller, "call_accepted", {"from_id": "aaa", "answer": answer("late")})
        await drain(controller)

        assert controller.negotiations["aaa"].state is NegotiationState.STABLE
        assert controller.negotiations["aaa"].pc.remoteDescription.sdp == "remote-offer"

    async def test_renegotiation_offer_is_answered(self, controller, transport):
        await admitted(controller, "bbb", participants=[{"id": "aaa", "identity": "alice"}])
        await receive(controller, "incoming_call", {"from_id": "aaa", "offer": offer()})
        await drain(controller)

        await receive(controller, "renegotiation_offer", {"from_id": "aaa", "offer": offer("re-offer")})
        await drain(controller)

        assert transport.of("renegotiation_answer")[0]["to_id"] == "aaa"
        assert controller.negotiations["aaa"].state is NegotiationState.STABLE


class TestSessionLifecycle:
    async def test_participant_left_tears_down_in_any_state(self, controller):
        await admitted(controller, "aaa")
        await receive(controller, "participant_joined", {"id": "bbb", "identity": "bob", "participant_count": 2})
        await drain(controller)
        session = controller.negotiations["bbb"]
        assert session.state is NegotiationState.OFFER_SENT

        await receive(controller, "participant_left", {"id": "bbb", "identity": "bob", "participant_count": 1})

        assert session.state is NegotiationState.CLOSED
        assert session.pc.close_count == 1
        assert "bbb" not in controller.negotiations
        assert "bbb" not in controller.participants
        assert "bbb" not in controller.media.sessions

    async def test_repeated_offer_replaces_session(self, controller):
        await admitted(controller, "bbb", participants=[{"id": "aaa", "identity": "alice"}])
        await receive(controller, "incoming_call", {"from_id": "aaa", "offer": offer("first")})
        await drain(controller)
        first = controller.negotiations["aaa"]

        await receive(controller, "incoming_call", {"from_id": "aaa", "offer": offer("second")})
        await drain(controller)

        second = controller.negotiations["aaa"]
        assert second is not first
        assert first.state is NegotiationState.CLOSED
        assert second.state is NegotiationState.STABLE
        assert len(live_sessions(controller, "aaa")) == 1

    async def test_glare_polite_side_yields(self, controller, transport):
        # bbb > aaa 이므로 bbb 가 양보
        await admitted(controller, "bbb")
        await receive(controller, "participant_joined", {"id": "aaa", "identity": "alice", "participant_count": 2})
        await drain(controller)
        assert controller.negotiations["aaa"].state is NegotiationState.OFFER_SENT

        await receive(controller, "incoming_call", {"from_id": "aaa", "offer": offer()})
        await drain(controller)

        assert controller.negotiations["aaa"].state is NegotiationState.STABLE
        assert transport.of("call_answer")[0]["to_id"] == "aaa"
        assert len(live_sessions(controller, "aaa")) == 1

    async def test_glare_impolite_side_keeps_offer(self, controller, transport):
        await admitted(controller, "aaa")
        await receive(controller, "participant_joined", {"id": "bbb", "identity": "bob", "participant_count": 2})
        await drain(controller)
        session = controller.negotiations["bbb"]

        await receive(controller, "incoming_call", {"from_id": "bbb", "offer": offer()})
        await drain(controller)

        assert controller.negotiations["bbb"] is session
        assert session.state is NegotiationState.OFFER_SENT
        assert transport.of("call_answer") == []

    async def test_messages_for_unknown_remote_are_ignored(self, controller):
        await admitted(controller, "bbb")

        await receive(controller, "call_accepted", {"from_id": "zzz", "answer": answer()})
        await receive(controller, "renegotiation_answer", {"from_id": "zzz", "answer": answer()})

        assert controller.negotiations == {}


class TestLocalIntents:
    async def test_media_toggle_updates_display_flags(self, controller):
        await admitted(controller, "bbb", participants=[{"id": "aaa", "identity": "alice"}])

        await receive(controller, "media_toggle", {"id": "aaa", "kind": "video", "enabled": False})

        assert controller.participants["aaa"].video_enabled is False
        assert controller.participants["aaa"].audio_enabled is True

    async def test_toggle_audio_mutes_track_and_notifies_relay(self, controller, transport):
        await admitted(controller, "bbb")

        assert await controller.toggle_audio() is False

        assert controller.media.tracks["audio"].enabled is False
        assert transport.of("media_toggle") == [{"kind": "audio", "enabled": False}]

    async def test_leave_releases_everything(self, controller, transport):
        await admitted(controller, "bbb", participants=[
            {"id": "aaa", "identity": "alice"},
            {"id": "ccc", "identity": "carol"},
        ])
        sessions = list(controller.negotiations.values())

        await controller.leave()

        assert transport.types()[-1] == "leave_room"
        assert all(s.state is NegotiationState.CLOSED for s in sessions)
        assert controller.negotiations == {}
        assert controller.participants == {}
        assert controller.media.tracks == {}
        assert controller.room_code is None

    async def test_run_stops_when_stream_closes(self, controller, transport):
        transport.push("session_id", {"session_id": "bbb"})
        transport.close_stream()

        await asyncio.wait_for(controller.run(), timeout=1)

        assert controller.session_id == "bbb"

    async def test_audio_only_media_starts_with_video_off(self, transport, pc_factory):
        controller = ClientSessionController(
            transport,
            MediaTrackCoordinator(relay=FakeRelay()),
            pc_factory=pc_factory,
            sleep=ManualTimer().sleep,
        )
        await controller.start_media(LocalMedia(tracks=[AudioStreamTrack()], audio_only=True))
        await admitted(controller, "bbb")

        assert controller.video_enabled is False
        assert set(controller.media.tracks) == {"audio"}

        # 카메라가 없으므로 첫 전환은 "켜짐" 으로 알려짐
        assert await controller.toggle_video() is True
        assert transport.of("media_toggle") == [{"kind": "video", "enabled": True}]
        await controller._teardown_all()
