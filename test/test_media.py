"""MediaTrackCoordinator / OutboundTrack 테스트."""

import asyncio
from fractions import Fraction

import numpy as np
import pytest
from aiortc import MediaStreamTrack, VideoStreamTrack
from av import AudioFrame

from conftest import FakePeerConnection, ManualTimer, settle
from huddle.errors import MediaAcquisitionFailure
from huddle.webrtc.media import MediaTrackCoordinator
from huddle.webrtc.negotiation import NegotiationSession, NegotiationState
from huddle.webrtc.tracks import OutboundTrack


async def _noop_send(message_type, data):
    return None


def make_session(media: MediaTrackCoordinator, remote_id: str, state=NegotiationState.IDLE) -> NegotiationSession:
    session = NegotiationSession(
        "local", remote_id, media, _noop_send,
        pc_factory=FakePeerConnection,
        sleep=ManualTimer().sleep,
    )
    session.state = state
    media.register(session)
    return session


def video_source(session: NegotiationSession):
    senders = [s for s in session.pc.senders if s.track is not None and s.track.kind == "video"]
    assert len(senders) == 1
    return senders[0].track.source


class TestAttach:
    async def test_attach_is_idempotent(self, media, local_tracks):
        media.set_local_source(local_tracks)
        session = make_session(media, "bob")

        assert media.attach_to(session) == 2
        assert media.attach_to(session) == 0
        assert len(session.pc.senders) == 2

    async def test_set_local_source_is_idempotent(self, media, local_tracks):
        session = make_session(media, "bob")
        media.set_local_source(local_tracks)
        outbound = dict(media.tracks)

        media.set_local_source(local_tracks)

        assert media.tracks == outbound
        assert len(session.pc.senders) == 2
        assert media.is_ready

    async def test_each_connection_gets_its_own_subscription(self, media, local_tracks):
        media.set_local_source(local_tracks)
        bob, carol = make_session(media, "bob"), make_session(media, "carol")
        media.attach_to(bob)
        media.attach_to(carol)

        assert bob.pc.senders[0].track is not carol.pc.senders[0].track
        assert bob.pc.senders[0].track.source is carol.pc.senders[0].track.source

    async def test_late_attach_to_stable_session_requests_renegotiation(self, media, local_tracks):
        session = make_session(media, "bob", state=NegotiationState.STABLE)

        media.set_local_source(local_tracks)

        assert session.pending_renegotiation is True
        await session.teardown()

    async def test_attach_to_idle_session_does_not_renegotiate(self, media, local_tracks):
        session = make_session(media, "bob")

        media.set_local_source(local_tracks)

        assert len(session.pc.senders) == 2
        assert session.pending_renegotiation is False

    async def test_closed_session_is_skipped(self, media, local_tracks):
        media.set_local_source(local_tracks)
        session = make_session(media, "bob")
        await session.teardown()

        assert media.attach_to(session) == 0


class TestScreenShare:
    async def test_screen_share_replaces_video_on_every_session(self, media, local_tracks):
        media.set_local_source(local_tracks)
        sessions = [make_session(media, name) for name in ("bob", "carol", "dave")]
        for session in sessions:
            media.attach_to(session)

        await media.start_screen_share(VideoStreamTrack())

        assert media.is_screen_sharing
        assert all(video_source(s) is media.screen_track for s in sessions)

        await media.stop_screen_share()

        camera = media.tracks["video"]
        assert not media.is_screen_sharing
        assert all(video_source(s) is camera for s in sessions)

    async def test_failed_replace_reverts_every_session_to_camera(self, media, local_tracks):
        media.set_local_source(local_tracks)
        sessions = [make_session(media, name) for name in ("bob", "carol")]
        for session in sessions:
            media.attach_to(session)
        failing = [s for s in sessions[1].pc.senders if s.track.kind == "video"][0]
        failing.fail_next = True

        with pytest.raises(MediaAcquisitionFailure):
            await media.start_screen_share(VideoStreamTrack())

        camera = media.tracks["video"]
        assert not media.is_screen_sharing
        assert all(video_source(s) is camera for s in sessions)

    async def test_screen_track_ending_reverts_to_camera(self, media, local_tracks):
        media.set_local_source(local_tracks)
        session = make_session(media, "bob")
        media.attach_to(session)
        screen_source = VideoStreamTrack()
        await media.start_screen_share(screen_source)

        screen_source.stop()
        await settle()
        await asyncio.sleep(0.01)

        assert not media.is_screen_sharing
        assert video_source(session) is media.tracks["video"]

    async def test_new_session_during_share_gets_screen(self, media, local_tracks):
        media.set_local_source(local_tracks)
        await media.start_screen_share(VideoStreamTrack())

        session = make_session(media, "late")
        media.attach_to(session)

        assert video_source(session) is media.screen_track


class TestToggleAndRelease:
    async def test_set_enabled_flips_outbound_track(self, media, local_tracks):
        media.set_local_source(local_tracks)

        assert media.set_enabled("audio", False)
        assert media.tracks["audio"].enabled is False
        assert media.tracks["video"].enabled is True

    async def test_set_enabled_without_track(self, media):
        assert media.set_enabled("video", False) is False

    async def test_release_all_stops_every_track(self, media, local_tracks):
        media.set_local_source(local_tracks)
        session = make_session(media, "bob")
        media.attach_to(session)

        media.release_all()

        assert media.tracks == {}
        assert media.sessions == {}
        assert not media.is_ready
        assert all(track.readyState == "ended" for track in local_tracks)
        assert all(sender.track.stopped for sender in session.pc.senders)


class _ToneSource(MediaStreamTrack):
    kind = "audio"

    async def recv(self):
        frame = AudioFrame(format="s16", layout="mono", samples=960)
        for plane in frame.planes:
            plane.update(b"\x01" * plane.buffer_size)
        frame.sample_rate = 48000
        frame.pts = 0
        frame.time_base = Fraction(1, 48000)
        return frame


class TestOutboundTrack:
    async def test_disabled_audio_is_silent(self):
        track = OutboundTrack(_ToneSource())

        loud = await track.recv()
        track.enabled = False
        quiet = await track.recv()

        assert np.any(loud.to_ndarray() != 0)
        assert not np.any(quiet.to_ndarray())
        assert quiet.samples == loud.samples

    async def test_disabled_video_is_black(self):
        track = OutboundTrack(VideoStreamTrack())
        track.enabled = False

        frame = await track.recv()

        assert frame.width == 640 and frame.height == 480
        assert not np.any(frame.to_ndarray(format="rgb24"))

    async def test_source_end_stops_wrapper(self):
        source = VideoStreamTrack()
        track = OutboundTrack(source)

        source.stop()

        assert track.readyState == "ended"
