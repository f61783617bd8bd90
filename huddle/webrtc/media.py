"""송신 미디어 트랙 관리 모듈.

로컬 카메라/마이크/화면 트랙을 모든 협상 세션에 붙이고 교체하는
단일 관리자(MediaTrackCoordinator)를 제공합니다. 송신 트랙의 변경은
모두 이 모듈을 거칩니다.

Architecture:
    OutboundTrack (카메라/마이크/화면)
        → MediaRelay.subscribe()  (피어 연결별 복사본)
        → NegotiationSession.pc.addTrack() / sender.replaceTrack()

Note:
    - 세션별로 kind("audio"/"video") 당 sender 하나만 유지 (중복 sender 방지)
    - 화면 공유 중 교체가 실패하거나 화면 트랙이 끊기면 모든 세션을 카메라로 되돌림
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, Optional

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaRelay

from huddle.errors import MediaAcquisitionFailure
from .negotiation import NegotiationSession, NegotiationState
from .tracks import OutboundTrack

logger = logging.getLogger(__name__)


class MediaTrackCoordinator:
    """로컬 송신 트랙과 세션별 sender 를 관리합니다.

    Attributes:
        relay (MediaRelay): 한 트랙을 여러 피어 연결에 보내기 위한 릴레이
        tracks (Dict[str, OutboundTrack]): kind 별 카메라/마이크 송신 트랙
        screen_track (Optional[OutboundTrack]): 화면 공유 트랙 (공유 중일 때만)
        sessions (Dict[str, NegotiationSession]): remote_id 별 등록된 세션

    Examples:
        >>> media = MediaTrackCoordinator()
        >>> media.set_local_source(local.tracks)
        >>> media.register(session)
        >>> media.attach_to(session)
        >>> await media.start_screen_share(screen)
        >>> await media.stop_screen_share()
        >>> media.release_all()
    """

    def __init__(self, relay: Optional[MediaRelay] = None):
        self.relay = relay or MediaRelay()
        self.tracks: Dict[str, OutboundTrack] = {}
        self.screen_track: Optional[OutboundTrack] = None
        self.sessions: Dict[str, NegotiationSession] = {}

        # 세션별 kind -> RTCRtpSender
        self._senders: Dict[NegotiationSession, Dict[str, Any]] = {}
        self._ready = asyncio.Event()
        self._lock = asyncio.Lock()

    @property
    def is_ready(self) -> bool:
        """로컬 트랙이 설치되었는지 여부."""
        return self._ready.is_set()

    @property
    def is_screen_sharing(self) -> bool:
        return self.screen_track is not None

    async def wait_ready(self) -> None:
        """로컬 트랙이 설치될 때까지 기다립니다."""
        await self._ready.wait()

    def _outbound(self) -> Dict[str, MediaStreamTrack]:
        """현재 송신해야 하는 kind 별 트랙 (화면 공유 중이면 video 는 화면)."""
        outbound: Dict[str, MediaStreamTrack] = dict(self.tracks)
        if self.screen_track is not None:
            outbound["video"] = self.screen_track
        return outbound

    def _subscribe(self, track: Optional[MediaStreamTrack]) -> Optional[MediaStreamTrack]:
        return self.relay.subscribe(track) if track is not None else None

    # ------------------------------------------------------------
    # 세션 등록
    # ------------------------------------------------------------

    def register(self, session: NegotiationSession) -> None:
        """세션을 등록합니다. 이후 로컬 트랙 변경이 이 세션에도 적용됩니다."""
        self.sessions[session.remote_id] = session
        self._senders.setdefault(session, {})

    def unregister(self, session: NegotiationSession) -> None:
        """세션 등록을 해제하고 해당 세션의 relay 구독을 정리합니다."""
        if self.sessions.get(session.remote_id) is session:
            del self.sessions[session.remote_id]
        for sender in self._senders.pop(session, {}).values():
            if sender.track is not None:
                sender.track.stop()

    # ------------------------------------------------------------
    # 로컬 트랙
    # ------------------------------------------------------------

    def set_local_source(self, tracks: Iterable[MediaStreamTrack]) -> None:
        """초기 송신 트랙을 설치하고 등록된 모든 세션에 붙입니다.

        같은 원본 트랙으로 다시 호출하면 아무 일도 하지 않습니다.
        같은 kind 의 다른 트랙이 들어오면 (장치 변경) 기존 sender 의 트랙만 교체합니다.

        Args:
            tracks: 카메라/마이크 원본 트랙 목록
        """
        for track in tracks:
            current = self.tracks.get(track.kind)
            if current is not None and current.source is track:
                continue

            outbound = OutboundTrack(track)
            if current is not None:
                outbound.enabled = current.enabled
            self.tracks[track.kind] = outbound
            logger.info(f"[Media] 로컬 {track.kind} 트랙 설치")

            if current is not None:
                if not (track.kind == "video" and self.is_screen_sharing):
                    self._replace_all(track.kind, outbound)
                current.stop()

        self._ready.set()
        for session in list(self.sessions.values()):
            self.attach_to(session)

    def attach_to(self, session: NegotiationSession, notify: bool = True) -> int:
        """아직 붙지 않은 송신 트랙을 세션의 피어 연결에 추가합니다.

        이미 sender 가 있는 kind 는 건너뛰므로 여러 번 호출해도 안전합니다.
        트랙이 추가되었고 세션이 이미 협상을 시작한 상태면 재협상을 요청합니다.

        Args:
            session: 대상 세션
            notify: 트랙 추가 시 session.renegotiation_needed() 호출 여부
                (offer/answer 를 만들기 직전에는 False)

        Returns:
            int: 새로 추가한 트랙 수
        """
        if session.is_closed:
            return 0

        senders = self._senders.setdefault(session, {})
        added = 0
        for kind, track in self._outbound().items():
            if kind in senders:
                continue
            senders[kind] = session.pc.addTrack(self.relay.subscribe(track))
            added += 1
            logger.info(f"[Media] 피어 {session.remote_id[:8]}에 {kind} 트랙 추가")

        if added and notify and session.state is not NegotiationState.IDLE:
            session.renegotiation_needed()
        return added

    def set_enabled(self, kind: str, enabled: bool) -> bool:
        """송신 트랙의 활성화 여부를 바꿉니다 (재협상 없음).

        Returns:
            bool: 해당 kind 의 트랙이 있어서 적용되었는지 여부
        """
        applied = False
        track = self.tracks.get(kind)
        if track is not None:
            track.enabled = enabled
            applied = True
        if kind == "video" and self.screen_track is not None:
            self.screen_track.enabled = enabled
            applied = True

        if applied:
            logger.info(f"[Media] 로컬 {kind} {'켜짐' if enabled else '꺼짐'}")
        return applied

    # ------------------------------------------------------------
    # 비디오 교체 (화면 공유)
    # ------------------------------------------------------------

    def _replace_all(self, kind: str, track: Optional[MediaStreamTrack]) -> None:
        for session, senders in list(self._senders.items()):
            sender = senders.get(kind)
            if sender is None:
                continue
            previous = sender.track
            sender.replaceTrack(self._subscribe(track))
            if previous is not None:
                previous.stop()

    def _revert_to_camera(self) -> None:
        camera = self.tracks.get("video")
        for session, senders in list(self._senders.items()):
            sender = senders.get("video")
            if sender is None:
                continue
            try:
                previous = sender.track
                sender.replaceTrack(self._subscribe(camera))
                if previous is not None:
                    previous.stop()
            except Exception as e:
                logger.error(f"[Media] 피어 {session.remote_id[:8]} 카메라 복구 실패: {e}")

    def replace_outbound_video(self, track: Optional[MediaStreamTrack]) -> None:
        """모든 세션의 송신 비디오를 한 번에 교체합니다.

        하나라도 실패하면 모든 세션을 카메라로 되돌리고 예외를 올립니다.
        비디오 sender 가 없는 세션에는 트랙을 새로 추가하고 재협상을 요청합니다.

        Args:
            track: 새 비디오 트랙 (None 이면 비디오 송신 중단)

        Raises:
            MediaAcquisitionFailure: 교체에 실패한 경우 (카메라로 복구된 뒤)
        """
        try:
            self._replace_all("video", track)
        except Exception as e:
            logger.error(f"[Media] 비디오 교체 실패 - 카메라로 복구: {e}")
            self._revert_to_camera()
            raise MediaAcquisitionFailure(f"비디오 교체 실패: {e}") from e

        for session in list(self.sessions.values()):
            self.attach_to(session)

    async def start_screen_share(self, source: MediaStreamTrack) -> None:
        """화면 공유를 시작합니다. 모든 세션의 비디오를 화면 트랙으로 교체합니다.

        Args:
            source: 화면 캡처 원본 트랙

        Raises:
            MediaAcquisitionFailure: 교체에 실패한 경우 (모든 세션은 카메라 상태)
        """
        async with self._lock:
            previous = self.screen_track
            screen = OutboundTrack(source)
            camera = self.tracks.get("video")
            if camera is not None:
                screen.enabled = camera.enabled
            self.screen_track = screen

            @screen.on("ended")
            async def on_screen_ended():
                logger.info("[Media] 화면 공유 트랙 종료 - 카메라로 복귀")
                await self.stop_screen_share(screen)

            try:
                self.replace_outbound_video(screen)
            except MediaAcquisitionFailure:
                self.screen_track = None
                screen.stop()
                raise
            finally:
                if previous is not None:
                    previous.stop()

            logger.info(f"[Media] 화면 공유 시작 ({len(self.sessions)}개 세션)")

    async def stop_screen_share(self, screen: Optional[OutboundTrack] = None) -> None:
        """화면 공유를 멈추고 모든 세션의 비디오를 카메라로 되돌립니다.

        Args:
            screen: 멈출 화면 트랙. 지정하면 현재 공유 중인 트랙과 같을 때만 멈춤
        """
        async with self._lock:
            current = self.screen_track
            if current is None or (screen is not None and screen is not current):
                return
            self.screen_track = None
            self._revert_to_camera()
            for session in list(self.sessions.values()):
                self.attach_to(session)
            current.stop()
            logger.info("[Media] 화면 공유 종료")

    # ------------------------------------------------------------
    # 종료
    # ------------------------------------------------------------

    def release_all(self) -> None:
        """모든 로컬 트랙을 멈추고 세션 등록을 해제합니다 (퇴장 시)."""
        for session in list(self._senders):
            self.unregister(session)
        self.sessions.clear()

        screen, self.screen_track = self.screen_track, None
        if screen is not None:
            screen.stop()
        for track in self.tracks.values():
            track.stop()
        self.tracks.clear()
        self._ready.clear()
        logger.info("[Media] 로컬 트랙 모두 해제")
