"""클라이언트 세션 컨트롤러.

릴레이 이벤트를 참가자별 NegotiationSession 과 MediaTrackCoordinator 에
연결하는 glue 레이어입니다.

Event → Action:
    join_accepted       → 기존 참가자마다 IDLE 세션 생성 (상대의 offer 대기)
    participant_joined  → 새 참가자와 세션 생성 후 initiate_call
    incoming_call       → 세션 생성/재사용 후 accept_call (glare 처리)
    call_accepted       → complete_call
    renegotiation_offer → accept_renegotiation (glare 처리)
    renegotiation_answer → complete_renegotiation
    participant_left    → teardown, 참가자 표시 상태 삭제
    media_toggle        → 참가자 표시 플래그 갱신
    room_full           → join() 이 AdmissionError 를 올림

Glare:
    양쪽이 동시에 offer 를 보낸 경우 세션 ID 가 사전순으로 작은 쪽이
    자신의 offer 를 유지하고(impolite), 큰 쪽이 양보합니다(polite).
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from aiortc import MediaStreamTrack

from huddle.errors import AdmissionError
from huddle.signaling.protocol import (
    MSG_CALL_ACCEPTED,
    MSG_ERROR,
    MSG_INCOMING_CALL,
    MSG_JOIN_ACCEPTED,
    MSG_JOIN_REQUEST,
    MSG_LEAVE_ROOM,
    MSG_MEDIA_TOGGLE,
    MSG_PARTICIPANT_JOINED,
    MSG_PARTICIPANT_LEFT,
    MSG_RENEGOTIATION_ANSWER,
    MSG_RENEGOTIATION_OFFER,
    MSG_ROOM_FULL,
    MSG_ROOMS_LIST,
    MSG_SESSION_ID,
)
from huddle.webrtc.config import negotiation_config
from huddle.webrtc.connection import create_peer_connection
from huddle.webrtc.devices import LocalMedia, acquire_local_media, acquire_screen_track
from huddle.webrtc.media import MediaTrackCoordinator
from huddle.webrtc.negotiation import NegotiationSession, NegotiationState
from .config import client_config

logger = logging.getLogger(__name__)


@dataclass
class RemoteParticipant:
    """화면에 표시할 원격 참가자 상태."""

    session_id: str
    identity: str
    audio_enabled: bool = True
    video_enabled: bool = True
    tracks: Dict[str, MediaStreamTrack] = field(default_factory=dict)


class ClientSessionController:
    """릴레이 이벤트에 따라 참가자별 협상 세션을 만들고 정리합니다.

    Attributes:
        transport: ``send(type, data)`` / ``messages()`` 를 제공하는 시그널링 클라이언트
        media (MediaTrackCoordinator): 송신 트랙 관리자
        session_id (Optional[str]): 릴레이가 발급한 내 세션 ID
        room_code (Optional[str]): 현재 입장한 룸
        participants (Dict[str, RemoteParticipant]): 원격 참가자 표시 상태
        negotiations (Dict[str, NegotiationSession]): 원격 참가자별 협상 세션 (참가자당 최대 1개)
        audio_enabled (bool): 내 오디오 송신 여부
        video_enabled (bool): 내 비디오 송신 여부

    Examples:
        >>> controller = ClientSessionController(SignalingClient(url), MediaTrackCoordinator())
        >>> await controller.transport.connect()
        >>> run_task = asyncio.create_task(controller.run())
        >>> await controller.start_media()
        >>> participants = await controller.join("ABC123", "alice@x.com")
        >>> await controller.toggle_audio()
        >>> await controller.leave()
    """

    def __init__(
        self,
        transport,
        media: Optional[MediaTrackCoordinator] = None,
        pc_factory: Callable[[str], Any] = create_peer_connection,
        renegotiation_window: float = negotiation_config.RENEGOTIATION_WINDOW,
        sleep: Callable[[float], Any] = asyncio.sleep,
        on_remote_track: Optional[Callable[[RemoteParticipant, MediaStreamTrack], None]] = None,
    ):
        self.transport = transport
        self.media = media or MediaTrackCoordinator()
        self.session_id: Optional[str] = None
        self.room_code: Optional[str] = None
        self.participants: Dict[str, RemoteParticipant] = {}
        self.negotiations: Dict[str, NegotiationSession] = {}
        self.audio_enabled = True
        self.video_enabled = True
        self.rooms: List[dict] = []

        self._pc_factory = pc_factory
        self._window = renegotiation_window
        self._sleep = sleep
        self._on_remote_track = on_remote_track
        self._join_future: Optional[asyncio.Future] = None

        self._handlers = {
            MSG_SESSION_ID: self._on_session_id,
            MSG_JOIN_ACCEPTED: self._on_join_accepted,
            MSG_ROOM_FULL: self._on_room_full,
            MSG_PARTICIPANT_JOINED: self._on_participant_joined,
            MSG_PARTICIPANT_LEFT: self._on_participant_left,
            MSG_INCOMING_CALL: self._on_incoming_call,
            MSG_CALL_ACCEPTED: self._on_call_accepted,
            MSG_RENEGOTIATION_OFFER: self._on_renegotiation_offer,
            MSG_RENEGOTIATION_ANSWER: self._on_renegotiation_answer,
            MSG_MEDIA_TOGGLE: self._on_media_toggle,
            MSG_ROOMS_LIST: self._on_rooms_list,
            MSG_ERROR: self._on_error,
        }

    # ------------------------------------------------------------
    # 수신 루프
    # ------------------------------------------------------------

    async def run(self) -> None:
        """연결이 끊길 때까지 릴레이 메시지를 처리합니다."""
        try:
            async for message in self.transport.messages():
                await self.handle_message(message)
        finally:
            await self._teardown_all()
            if self._join_future is not None and not self._join_future.done():
                self._join_future.set_exception(ConnectionError("시그널링 연결이 종료되었습니다"))

    async def handle_message(self, message: dict) -> None:
        message_type = message.get("type")
        handler = self._handlers.get(message_type)
        if handler is None:
            logger.warning(f"[Client] 알 수 없는 메시지 타입: {message_type}")
            return
        await handler(message.get("data") or {})

    # ------------------------------------------------------------
    # 협상 세션 관리
    # ------------------------------------------------------------

    def _is_polite(self, remote_id: str) -> bool:
        """glare 시 양보하는 쪽인지 여부 (세션 ID 가 큰 쪽이 양보)."""
        return (self.session_id or "") > remote_id

    async def _create_negotiation(self, remote_id: str) -> NegotiationSession:
        """remote_id 와의 새 협상 세션을 만듭니다. 기존 세션은 먼저 정리합니다."""
        existing = self.negotiations.get(remote_id)
        if existing is not None:
            await existing.teardown()

        session = NegotiationSession(
            self.session_id,
            remote_id,
            self.media,
            self.transport.send,
            pc_factory=self._pc_factory,
            on_track=self._handle_remote_track,
            on_closed=self._handle_negotiation_closed,
            window=self._window,
            sleep=self._sleep,
        )
        self.negotiations[remote_id] = session
        self.media.register(session)
        session.start()
        return session

    def _handle_negotiation_closed(self, remote_id: str, session: NegotiationSession) -> None:
        if self.negotiations.get(remote_id) is session:
            del self.negotiations[remote_id]
        self.media.unregister(session)
        participant = self.participants.get(remote_id)
        if participant is not None:
            participant.tracks.clear()

    def _handle_remote_track(self, remote_id: str, track: MediaStreamTrack) -> None:
        participant = self.participants.get(remote_id)
        if participant is None:
            logger.warning(f"[Client] 알 수 없는 참가자 {remote_id[:8]}의 트랙 무시")
            return
        participant.tracks[track.kind] = track
        if self._on_remote_track:
            self._on_remote_track(participant, track)

    async def _teardown_all(self) -> None:
        for session in list(self.negotiations.values()):
            await session.teardown()
        self.negotiations.clear()

    def _remember(self, remote_id: str, identity: str = "") -> RemoteParticipant:
        participant = self.participants.get(remote_id)
        if participant is None:
            participant = RemoteParticipant(session_id=remote_id, identity=identity)
            self.participants[remote_id] = participant
        elif identity:
            participant.identity = identity
        return participant

    # ------------------------------------------------------------
    # 협상 작업 (세션 워커에서 순서대로 실행)
    # ------------------------------------------------------------

    async def _call(self, session: NegotiationSession) -> None:
        await self.media.wait_ready()
        await session.initiate_call()

    async def _answer_call(self, session: NegotiationSession, offer: dict) -> None:
        if session.state is NegotiationState.IDLE:
            await session.accept_call(offer)
            return

        if session.state is NegotiationState.OFFER_SENT and not self._is_polite(session.remote_id):
            logger.info(f"[Client] glare - 피어 {session.remote_id[:8]}의 offer 무시, 내 offer 유지")
            return

        logger.info(f"[Client] 피어 {session.remote_id[:8]} 새 offer 수신 ({session.state.value}) - 세션 재생성")
        await session.teardown()
        fresh = await self._create_negotiation(session.remote_id)
        fresh.submit(fresh.accept_call, offer)

    async def _answer_renegotiation(self, session: NegotiationSession, offer: dict) -> None:
        if session.state is NegotiationState.RENEGOTIATION_PENDING:
            if not self._is_polite(session.remote_id):
                logger.info(f"[Client] 재협상 glare - 피어 {session.remote_id[:8]}의 offer 무시")
                return
            logger.info(f"[Client] 재협상 glare - 양보하고 피어 {session.remote_id[:8]}에게 새로 연결")
            await session.teardown()
            fresh = await self._create_negotiation(session.remote_id)
            fresh.submit(self._call, fresh)
            return

        await session.accept_renegotiation(offer)

    # ------------------------------------------------------------
    # 릴레이 이벤트 핸들러
    # ------------------------------------------------------------

    async def _on_session_id(self, data: dict) -> None:
        self.session_id = data.get("session_id")
        logger.info(f"[Client] 세션 ID 수신: {self.session_id}")

    async def _on_join_accepted(self, data: dict) -> None:
        self.session_id = data.get("session_id", self.session_id)
        self.room_code = data.get("room_code")
        participants = data.get("participants", [])
        logger.info(f"[Client] 룸 {self.room_code} 입장 - 기존 참가자 {len(participants)}명")

        for info in participants:
            participant = self._remember(info["id"], info.get("identity", ""))
            participant.audio_enabled = info.get("audio_enabled", True)
            participant.video_enabled = info.get("video_enabled", True)
            # 기존 참가자가 offer 를 보내므로 IDLE 로 대기
            await self._create_negotiation(participant.session_id)

        if self._join_future is not None and not self._join_future.done():
            self._join_future.set_result(participants)

    async def _on_room_full(self, data: dict) -> None:
        error = AdmissionError(data.get("room_code", ""), data.get("capacity", 0))
        logger.warning(f"[Client] 입장 거부: {error}")
        if self._join_future is not None and not self._join_future.done():
            self._join_future.set_exception(error)

    async def _on_participant_joined(self, data: dict) -> None:
        remote_id = data["id"]
        self._remember(remote_id, data.get("identity", ""))
        logger.info(f"[Client] 참가자 입장: {data.get('identity')} ({remote_id[:8]})")

        session = await self._create_negotiation(remote_id)
        session.submit(self._call, session)

    async def _on_participant_left(self, data: dict) -> None:
        remote_id = data["id"]
        self.participants.pop(remote_id, None)
        logger.info(f"[Client] 참가자 퇴장: {data.get('identity')} ({remote_id[:8]})")

        session = self.negotiations.get(remote_id)
        if session is not None:
            await session.teardown()

    async def _on_incoming_call(self, data: dict) -> None:
        remote_id = data["from_id"]
        self._remember(remote_id)
        session = self.negotiations.get(remote_id)
        if session is None:
            session = await self._create_negotiation(remote_id)
        session.submit(self._answer_call, session, data["offer"])

    async def _on_call_accepted(self, data: dict) -> None:
        session = self.negotiations.get(data["from_id"])
        if session is None:
            logger.info(f"[Client] 세션 없는 피어 {data['from_id'][:8]}의 answer 무시")
            return
        session.submit(session.complete_call, data["answer"])

    async def _on_renegotiation_offer(self, data: dict) -> None:
        session = self.negotiations.get(data["from_id"])
        if session is None:
            logger.info(f"[Client] 세션 없는 피어 {data['from_id'][:8]}의 재협상 offer 무시")
            return
        session.submit(self._answer_renegotiation, session, data["offer"])

    async def _on_renegotiation_answer(self, data: dict) -> None:
        session = self.negotiations.get(data["from_id"])
        if session is None:
            logger.info(f"[Client] 세션 없는 피어 {data['from_id'][:8]}의 재협상 answer 무시")
            return
        session.submit(session.complete_renegotiation, data["answer"])

    async def _on_media_toggle(self, data: dict) -> None:
        participant = self.participants.get(data.get("id"))
        if participant is None:
            return
        if data.get("kind") == "audio":
            participant.audio_enabled = bool(data.get("enabled"))
        elif data.get("kind") == "video":
            participant.video_enabled = bool(data.get("enabled"))

    async def _on_rooms_list(self, data: dict) -> None:
        self.rooms = data.get("rooms", [])
        logger.info(f"[Client] 룸 목록 수신: {len(self.rooms)}개")

    async def _on_error(self, data: dict) -> None:
        logger.warning(f"[Client] 릴레이 오류: {data.get('message')}")

    # ------------------------------------------------------------
    # 로컬 동작
    # ------------------------------------------------------------

    async def start_media(self, local: Optional[LocalMedia] = None) -> None:
        """로컬 미디어를 송신 트랙으로 설치합니다.

        카메라 없이 오디오만 얻은 경우 video_enabled 를 False 로 둡니다.

        Args:
            local: 이미 획득한 로컬 미디어. 없으면 기본 장치에서 획득

        Raises:
            MediaAcquisitionFailure: 마이크를 열 수 없는 경우
        """
        if local is None:
            local = acquire_local_media()
        self.video_enabled = not local.audio_only
        self.media.set_local_source(local.tracks)

    async def join(self, room_code: str, identity: str, timeout: float = client_config.JOIN_TIMEOUT) -> List[dict]:
        """룸 입장을 요청하고 결과를 기다립니다.

        run() 이 동시에 실행 중이어야 응답을 받을 수 있습니다.

        Returns:
            List[dict]: 기존 참가자 목록

        Raises:
            AdmissionError: 룸이 가득 찬 경우
            asyncio.TimeoutError: timeout 안에 응답이 없는 경우
        """
        self._join_future = asyncio.get_running_loop().create_future()
        await self.transport.send(MSG_JOIN_REQUEST, {"room_code": room_code, "identity": identity})
        try:
            return await asyncio.wait_for(self._join_future, timeout=timeout)
        finally:
            self._join_future = None

    async def _toggle(self, kind: str, enabled: bool) -> bool:
        self.media.set_enabled(kind, enabled)
        if self.room_code is not None:
            await self.transport.send(MSG_MEDIA_TOGGLE, {"kind": kind, "enabled": enabled})
        return enabled

    async def toggle_audio(self) -> bool:
        """마이크 음소거를 전환합니다. 전환 후 상태를 반환합니다."""
        self.audio_enabled = await self._toggle("audio", not self.audio_enabled)
        return self.audio_enabled

    async def toggle_video(self) -> bool:
        """카메라를 켜고 끕니다. 전환 후 상태를 반환합니다."""
        self.video_enabled = await self._toggle("video", not self.video_enabled)
        return self.video_enabled

    async def start_screen_share(self, source: Optional[MediaStreamTrack] = None) -> None:
        """화면 공유를 시작합니다.

        Raises:
            MediaAcquisitionFailure: 화면 캡처 실패 또는 트랙 교체 실패
        """
        if source is None:
            source = acquire_screen_track()
        await self.media.start_screen_share(source)

    async def stop_screen_share(self) -> None:
        await self.media.stop_screen_share()

    async def leave(self) -> None:
        """룸에서 나가고 모든 협상 세션과 로컬 트랙을 정리합니다."""
        if self.room_code is not None:
            try:
                await self.transport.send(MSG_LEAVE_ROOM, {})
            except Exception as e:
                logger.warning(f"[Client] leave_room 전송 실패: {e}")

        await self._teardown_all()
        self.media.release_all()
        self.participants.clear()
        logger.info(f"[Client] 룸 {self.room_code} 퇴장")
        self.room_code = None
