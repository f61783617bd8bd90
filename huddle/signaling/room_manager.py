"""룸 기반 참가자 관리 및 시그널링 릴레이 모듈.

이 모듈은 멀티 피어(mesh) 화상 회의의 룸(방)과 참가자 세션을 관리하고,
참가자 간 협상 메시지(offer/answer)를 특정 세션으로 중계합니다.
미디어 자체는 참가자끼리 직접 주고받으며 서버는 시그널링만 담당합니다.

주요 기능:
    - 룸 생성 및 삭제 (첫 입장 시 자동 생성/비어있을 때 자동 삭제)
    - 정원(10명) 검사 후 입장 허용 또는 거부
    - 입장/퇴장/미디어 토글 알림 브로드캐스트
    - 세션 ID 기반 1:1 메시지 중계

Architecture:
    - rooms: Dict[str, Dict[str, Participant]] - 룸 코드 → 참가자 맵
    - session_rooms: Dict[str, str] - 세션 ID → 룸 코드 (빠른 조회용)
    - 룸별 asyncio.Lock: 입장/퇴장/토글을 룸 단위로 직렬화
      (정원 검사와 추가가 원자적으로 수행됨, 서로 다른 룸은 병렬 처리)

Ordering:
    - 새 참가자는 join_accepted 를 먼저 받고, 그 다음 기존 참가자들이
      participant_joined 를 받습니다.
    - 두 세션 사이의 메시지는 보낸 순서대로 전달됩니다 (세션별 전송 락).

Classes:
    Participant: 참가자 세션 데이터 클래스
    JoinResult: 입장 결과
    RoomManager: 룸 레지스트리 및 릴레이

Examples:
    기본 사용법:
        >>> manager = RoomManager()
        >>> result = await manager.join("ABC123", "alice@x.com", websocket)
        >>> print(result.session_id, result.others)
        >>> await manager.relay("call_offer", alice_id, bob_id, offer)
        >>> await manager.leave(alice_id)

See Also:
    routes/signaling.py: WebSocket 시그널링 엔드포인트
    huddle/client/controller.py: 클라이언트 측 이벤트 처리
"""
import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from huddle.errors import AdmissionError, RoutingMiss
from .config import room_config
from .protocol import (
    MSG_JOIN_ACCEPTED,
    MSG_MEDIA_TOGGLE,
    MSG_PARTICIPANT_JOINED,
    MSG_PARTICIPANT_LEFT,
    RELAY_ROUTES,
    make_message,
)

logger = logging.getLogger(__name__)


@dataclass
class Participant:
    """룸에 참가한 세션을 나타내는 데이터 클래스.

    세션은 연결 단위로 발급된 고유 ID를 가지며, 한 번에 하나의 룸에만
    속할 수 있습니다. 릴레이만 이 객체를 생성/변경합니다.

    Attributes:
        session_id (str): 릴레이가 발급한 세션 ID (UUID)
        identity (str): 사용자가 입력한 표시 이름 (검증하지 않음)
        room_code (str): 참가 중인 룸 코드
        websocket (Any): ``send_json`` 코루틴을 가진 연결 객체
        joined_at (float): 입장 시각 (epoch seconds)
        audio_enabled (bool): 오디오 on/off
        video_enabled (bool): 비디오 on/off
    """
    session_id: str
    identity: str
    room_code: str
    websocket: Any
    joined_at: float = field(default_factory=time.time)
    audio_enabled: bool = True
    video_enabled: bool = True
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def to_info(self) -> dict:
        """다른 참가자에게 보여줄 공개 정보."""
        return {
            "id": self.session_id,
            "identity": self.identity,
            "audio_enabled": self.audio_enabled,
            "video_enabled": self.video_enabled,
        }


@dataclass
class JoinResult:
    """입장 성공 결과.

    Attributes:
        session_id (str): 입장한 세션 ID
        room_code (str): 입장한 룸 코드
        others (List[dict]): 입장 시점의 다른 참가자 목록 (본인 제외)
    """
    session_id: str
    room_code: str
    others: List[dict]


class RoomManager:
    """룸과 참가자 세션을 관리하고 협상 메시지를 중계하는 클래스.

    프로세스 시작 시 한 번 생성되어 WebSocket 핸들러에 주입됩니다
    (app.py lifespan → app.state.room_manager). 모듈 전역 상태를 사용하지 않습니다.

    Attributes:
        rooms (Dict[str, Dict[str, Participant]]): 룸 코드 → {세션 ID: Participant}
        session_rooms (Dict[str, str]): 세션 ID → 룸 코드 역 매핑
        capacity (int): 룸당 최대 인원
        send_timeout (float): 메시지 전송 타임아웃 (초)

    Concurrency:
        - 입장/퇴장/토글은 룸별 락 안에서 수행됨
        - 락은 참조 카운트로 관리되어 대기자가 없으면 삭제됨
        - 전송 실패한 세션은 락을 놓은 뒤 퇴장 처리됨 (asyncio.Lock 은 재진입 불가)

    Examples:
        >>> manager = RoomManager()
        >>> await manager.join("ABC123", "alice@x.com", ws1)
        >>> await manager.join("ABC123", "bob@x.com", ws2)
        >>> manager.get_room_count("ABC123")
        2
    """

    def __init__(self, capacity: int = room_config.MAX_PARTICIPANTS, send_timeout: float = room_config.SEND_TIMEOUT):
        """RoomManager 초기화.

        Args:
            capacity: 룸당 최대 인원 (기본 10)
            send_timeout: 메시지 전송 타임아웃 (초)
        """
        # room_code -> {session_id: Participant}
        self.rooms: Dict[str, Dict[str, Participant]] = {}

        # session_id -> room_code (for quick lookup)
        self.session_rooms: Dict[str, str] = {}

        self.capacity = capacity
        self.send_timeout = send_timeout

        # room_code -> Lock, room_code -> 락 사용 중인 코루틴 수
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_refs: Dict[str, int] = {}

    @asynccontextmanager
    async def _room_lock(self, room_code: str):
        """룸 단위 락을 획득합니다.

        조회와 참조 카운트 증가 사이에 await 가 없으므로 같은 룸 코드에 대해
        항상 하나의 락만 존재합니다.
        """
        lock = self._locks.get(room_code)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[room_code] = lock
            self._lock_refs[room_code] = 0
        self._lock_refs[room_code] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_refs[room_code] -= 1
            if self._lock_refs[room_code] == 0:
                del self._lock_refs[room_code]
                del self._locks[room_code]

    @staticmethod
    def new_session_id() -> str:
        """연결 단위 세션 ID를 발급합니다."""
        return str(uuid.uuid4())

    async def join(
        self,
        room_code: str,
        identity: str,
        websocket: Any,
        session_id: Optional[str] = None,
    ) -> JoinResult:
        """세션을 룸에 입장시킵니다.

        룸이 가득 찼으면 아무것도 변경하지 않고 AdmissionError 를 발생시킵니다.
        입장에 성공하면 입장한 세션에 join_accepted 를 먼저 보낸 뒤
        기존 참가자들에게 participant_joined 를 브로드캐스트합니다.

        Args:
            room_code: 입장할 룸 코드 (비어있으면 안 됨)
            identity: 표시 이름 (비어있으면 안 됨)
            websocket: ``send_json`` 을 가진 연결 객체
            session_id: 연결에 이미 발급된 세션 ID (없으면 새로 발급)

        Returns:
            JoinResult: 세션 ID와 기존 참가자 목록

        Raises:
            ValueError: room_code 또는 identity 가 비어있는 경우
            AdmissionError: 룸 정원이 가득 찬 경우

        Note:
            - 이미 다른 룸에 있는 세션이면 먼저 기존 룸에서 퇴장시킴
            - 룸이 없으면 자동으로 생성됨
        """
        if not room_code:
            raise ValueError("room_code is required")
        if not identity:
            raise ValueError("identity is required")

        session_id = session_id or self.new_session_id()

        # 한 세션은 한 룸에만 속함
        if session_id in self.session_rooms:
            await self.leave(session_id)

        failed: List[str] = []
        async with self._room_lock(room_code):
            occupants = self.rooms.get(room_code, {})
            if len(occupants) >= self.capacity:
                logger.warning(
                    f"[Signaling] 룸 '{room_code}' 정원 초과 - '{identity}' 입장 거부 "
                    f"({len(occupants)}/{self.capacity})"
                )
                raise AdmissionError(room_code, self.capacity)

            # Create room if doesn't exist
            if room_code not in self.rooms:
                self.rooms[room_code] = {}
                logger.info(f"[Signaling] 룸 '{room_code}' 생성")

            others = [p.to_info() for p in self.rooms[room_code].values()]
            participant = Participant(
                session_id=session_id,
                identity=identity,
                room_code=room_code,
                websocket=websocket,
            )
            self.rooms[room_code][session_id] = participant
            self.session_rooms[session_id] = room_code
            count = len(self.rooms[room_code])

            logger.info(
                f"[Signaling] '{identity}' ({session_id[:8]}) 룸 '{room_code}' 입장. 현재 {count}명"
            )

            # 입장한 본인이 먼저 응답을 받아야 함
            accepted = make_message(MSG_JOIN_ACCEPTED, {
                "session_id": session_id,
                "room_code": room_code,
                "participants": others,
                "participant_count": count,
            })
            if not await self._send(participant, accepted):
                failed.append(session_id)

            failed.extend(await self._broadcast(
                room_code,
                make_message(MSG_PARTICIPANT_JOINED, {
                    "id": session_id,
                    "identity": identity,
                    "participant_count": count,
                }),
                exclude=session_id,
            ))

        await self._retire(failed)
        return JoinResult(session_id=session_id, room_code=room_code, others=others)

    async def leave(self, session_id: str) -> Optional[str]:
        """세션을 현재 룸에서 퇴장시킵니다.

        남은 참가자들에게 participant_left 를 알리고, 룸이 비면 삭제합니다.
        룸에 없는 세션에 대해 호출하면 아무 일도 하지 않습니다 (멱등).

        Args:
            session_id: 퇴장할 세션 ID

        Returns:
            Optional[str]: 세션이 속해있던 룸 코드. 룸에 없었으면 None
        """
        while True:
            room_code = self.session_rooms.get(session_id)
            if room_code is None:
                return None

            failed: List[str] = []
            async with self._room_lock(room_code):
                # 락 대기 중에 이미 다른 경로로 퇴장했을 수 있음
                if self.session_rooms.get(session_id) != room_code:
                    continue

                participant = self.rooms[room_code].pop(session_id)
                del self.session_rooms[session_id]
                remaining = len(self.rooms[room_code])

                if remaining == 0:
                    del self.rooms[room_code]
                    logger.info(f"[Signaling] 룸 '{room_code}' 삭제 (비어있음)")
                else:
                    logger.info(
                        f"[Signaling] '{participant.identity}' ({session_id[:8]}) 룸 '{room_code}' 퇴장. "
                        f"남은 인원 {remaining}명"
                    )
                    failed = await self._broadcast(
                        room_code,
                        make_message(MSG_PARTICIPANT_LEFT, {
                            "id": session_id,
                            "identity": participant.identity,
                            "participant_count": remaining,
                        }),
                    )

            await self._retire(failed)
            return room_code

    async def relay(self, kind: str, from_id: str, to_id: str, payload: dict) -> bool:
        """협상 메시지를 정확히 하나의 대상 세션으로 중계합니다.

        call_offer → incoming_call, call_answer → call_accepted 로 변환되며,
        재협상 메시지는 같은 타입 그대로 전달됩니다. 모든 메시지에는
        보낸 세션 ID(from_id)가 붙습니다.

        Args:
            kind: 클라이언트가 보낸 메시지 타입 (call_offer 등)
            from_id: 보낸 세션 ID
            to_id: 받을 세션 ID
            payload: SDP 설명 ({"sdp": ..., "type": ...})

        Returns:
            bool: 전달 성공 여부. 대상이 없으면 조용히 False 반환

        Raises:
            ValueError: 중계 대상이 아닌 메시지 타입
        """
        if kind not in RELAY_ROUTES:
            raise ValueError(f"Unsupported relay kind: {kind}")
        route_type, field_name = RELAY_ROUTES[kind]

        try:
            target = self._lookup_peer(from_id, to_id)
        except RoutingMiss as e:
            # 보낸 쪽도 곧 participant_left 를 받아 정리하게 됨
            logger.info(f"[Signaling] {kind} 전달 생략 ({from_id[:8]} -> {to_id[:8]}): {e}")
            return False

        message = make_message(route_type, {"from_id": from_id, field_name: payload})
        if await self._send(target, message):
            logger.debug(f"[Signaling] {kind} 중계: {from_id[:8]} -> {to_id[:8]}")
            return True

        await self._retire([to_id])
        return False

    async def toggle_media(self, session_id: str, kind: str, enabled: bool) -> bool:
        """세션의 오디오/비디오 플래그를 변경하고 같은 룸에 알립니다.

        Args:
            session_id: 변경할 세션 ID
            kind: "audio" 또는 "video"
            enabled: 켜짐 여부

        Returns:
            bool: 세션이 룸에 있어 변경이 반영되었으면 True
        """
        if kind not in ("audio", "video"):
            raise ValueError(f"Unsupported media kind: {kind}")

        room_code = self.session_rooms.get(session_id)
        if room_code is None:
            return False

        failed: List[str] = []
        async with self._room_lock(room_code):
            participant = self.rooms.get(room_code, {}).get(session_id)
            if participant is None:
                return False

            setattr(participant, f"{kind}_enabled", enabled)
            logger.info(f"[Signaling] {session_id[:8]} {kind} {'on' if enabled else 'off'}")

            failed = await self._broadcast(
                room_code,
                make_message(MSG_MEDIA_TOGGLE, {"id": session_id, "kind": kind, "enabled": enabled}),
                exclude=session_id,
            )

        await self._retire(failed)
        return True

    def _lookup_peer(self, from_id: str, to_id: str) -> Participant:
        """같은 룸에 있는 다른 대상 세션을 찾습니다. 자기 자신은 대상이 될 수 없습니다."""
        if to_id == from_id:
            raise RoutingMiss(to_id)
        room_code = self.session_rooms.get(to_id)
        if room_code is None or self.session_rooms.get(from_id) != room_code:
            raise RoutingMiss(to_id)
        participant = self.rooms.get(room_code, {}).get(to_id)
        if participant is None:
            raise RoutingMiss(to_id)
        return participant

    async def _send(self, participant: Participant, message: dict) -> bool:
        """참가자에게 메시지를 전송합니다.

        세션별 전송 락으로 같은 연결에 대한 전송 순서를 보장합니다.

        Returns:
            bool: 전송 성공 여부
        """
        try:
            async with participant.send_lock:
                await asyncio.wait_for(participant.websocket.send_json(message), timeout=self.send_timeout)
            return True
        except Exception as e:
            logger.error(f"[Signaling] 세션 {participant.session_id[:8]}에 전송 중 오류: {e}")
            return False

    async def _broadcast(self, room_code: str, message: dict, exclude: Optional[str] = None) -> List[str]:
        """룸의 다른 참가자들에게 메시지를 브로드캐스트합니다.

        호출자가 룸 락을 잡고 있어야 합니다.

        Returns:
            List[str]: 전송에 실패한 세션 ID 목록
        """
        failed = []
        for participant in list(self.rooms.get(room_code, {}).values()):
            if participant.session_id == exclude:
                continue
            if not await self._send(participant, message):
                failed.append(participant.session_id)
        return failed

    async def _retire(self, session_ids: List[str]) -> None:
        """전송에 실패한 세션들을 끊긴 것으로 보고 퇴장시킵니다."""
        for session_id in session_ids:
            logger.warning(f"[Signaling] 응답 없는 세션 {session_id[:8]} 정리")
            await self.leave(session_id)

    def get_participant(self, session_id: str) -> Optional[Participant]:
        """세션 ID로 Participant 를 조회합니다."""
        room_code = self.session_rooms.get(session_id)
        if room_code and room_code in self.rooms:
            return self.rooms[room_code].get(session_id)
        return None

    def get_session_room(self, session_id: str) -> Optional[str]:
        """세션이 속한 룸 코드를 반환합니다."""
        return self.session_rooms.get(session_id)

    def get_room_participants(self, room_code: str) -> List[Participant]:
        """룸의 모든 참가자 목록을 반환합니다. 룸이 없으면 빈 리스트."""
        return list(self.rooms.get(room_code, {}).values())

    def get_room_count(self, room_code: str) -> int:
        """룸의 현재 참가자 수를 반환합니다. 룸이 없으면 0."""
        return len(self.rooms.get(room_code, {}))

    def has_room(self, room_code: str) -> bool:
        return room_code in self.rooms

    def get_room_list(self) -> List[dict]:
        """모든 룸의 정보를 리스트로 반환합니다.

        Returns:
            List[dict]: 룸 정보 리스트
                - room_code (str): 룸 코드
                - participant_count (int): 현재 참가자 수
                - capacity (int): 최대 인원
                - participants (List[dict]): 참가자 공개 정보
        """
        return [
            {
                "room_code": room_code,
                "participant_count": len(participants),
                "capacity": self.capacity,
                "participants": [p.to_info() for p in participants.values()],
            }
            for room_code, participants in self.rooms.items()
        ]

    def get_stats(self) -> dict:
        """룸/세션 수 통계."""
        return {"rooms": len(self.rooms), "sessions": len(self.session_rooms)}
