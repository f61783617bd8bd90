"""피어 협상 상태 머신 모듈.

원격 참가자 한 명당 하나의 NegotiationSession 이 생성되어 aiortc
RTCPeerConnection 위에서 offer/answer 교환과 재협상을 수행합니다.

States:
    IDLE → OFFER_SENT → STABLE            (내가 offer 를 보내는 경우)
    IDLE → OFFER_RECEIVED → STABLE        (상대의 offer 에 answer 하는 경우)
    STABLE → RENEGOTIATION_PENDING → STABLE  (로컬 트랙 변경 후 재협상)
    STABLE → OFFER_RECEIVED → STABLE      (상대의 재협상 offer 에 answer)
    * → CLOSED                            (teardown, 종료 상태)

허용되지 않은 전이는 NegotiationConflict 로 거부됩니다. 중복 offer,
늦게 도착한 answer 같은 순서가 맞지 않는 메시지는 로그만 남기고 무시합니다.

Concurrency:
    - 세션마다 작업 큐와 워커 태스크를 하나씩 가짐
    - 같은 원격 피어에 대한 메시지는 도착 순서대로 적용되고,
      다른 원격 피어의 협상은 서로 기다리지 않음
    - teardown 은 진행 중인 작업을 즉시 취소함 (answer 를 기다리지 않음)

Renegotiation:
    aiortc 에는 negotiationneeded 이벤트가 없으므로 트랙을 추가한 쪽
    (MediaTrackCoordinator)이 renegotiation_needed() 를 호출합니다.
    첫 신호 이후 RENEGOTIATION_WINDOW 동안 들어온 신호는 하나의 offer 로
    합쳐집니다. 대기 함수(sleep)는 테스트에서 가상 타이머로 교체할 수 있습니다.

Examples:
    >>> session = NegotiationSession("local-id", "remote-id", media, transport.send)
    >>> session.start()
    >>> session.submit(session.initiate_call)
    >>> # ... call_accepted 수신 시
    >>> session.submit(session.complete_call, answer)
    >>> await session.teardown()
"""
import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from aiortc import RTCSessionDescription

from huddle.errors import CapabilityFailure, NegotiationConflict
from huddle.signaling.protocol import (
    MSG_CALL_ANSWER,
    MSG_CALL_OFFER,
    MSG_RENEGOTIATION_ANSWER,
    MSG_RENEGOTIATION_OFFER,
)
from .config import negotiation_config
from .connection import create_peer_connection

if TYPE_CHECKING:
    from .media import MediaTrackCoordinator

logger = logging.getLogger(__name__)


class NegotiationState(str, Enum):
    """협상 상태."""

    IDLE = "idle"
    OFFER_SENT = "offer_sent"
    OFFER_RECEIVED = "offer_received"
    STABLE = "stable"
    RENEGOTIATION_PENDING = "renegotiation_pending"
    CLOSED = "closed"


TRANSITIONS = {
    NegotiationState.IDLE: {
        NegotiationState.OFFER_SENT,
        NegotiationState.OFFER_RECEIVED,
        NegotiationState.CLOSED,
    },
    NegotiationState.OFFER_SENT: {NegotiationState.STABLE, NegotiationState.CLOSED},
    NegotiationState.OFFER_RECEIVED: {NegotiationState.STABLE, NegotiationState.CLOSED},
    NegotiationState.STABLE: {
        NegotiationState.OFFER_SENT,
        NegotiationState.OFFER_RECEIVED,
        NegotiationState.RENEGOTIATION_PENDING,
        NegotiationState.CLOSED,
    },
    NegotiationState.RENEGOTIATION_PENDING: {NegotiationState.STABLE, NegotiationState.CLOSED},
    NegotiationState.CLOSED: set(),
}

# offer 에 항상 포함하는 미디어 종류 (송신 트랙이 없어도 수신은 받음)
MEDIA_KINDS = ("audio", "video")

# (message_type, data) 를 릴레이로 보내는 코루틴 함수
SignalSender = Callable[[str, dict], Awaitable[Any]]


class NegotiationSession:
    """원격 참가자 한 명과의 협상을 담당하는 상태 머신.

    Attributes:
        local_id (str): 내 세션 ID
        remote_id (str): 상대 세션 ID
        pc: 피어 연결 (기본값 aiortc RTCPeerConnection)
        state (NegotiationState): 현재 협상 상태
        pending_renegotiation (bool): 재협상 신호가 처리되지 않고 남아있는지 여부

    Note:
        - 송신 트랙은 직접 변경하지 않고 MediaTrackCoordinator 를 통해서만 붙임
        - 피어 연결이 거부한 단계(CapabilityFailure)는 이 세션만 정리하고
          다른 피어와의 세션에는 영향을 주지 않음
    """

    def __init__(
        self,
        local_id: str,
        remote_id: str,
        media: "MediaTrackCoordinator",
        signal: SignalSender,
        pc_factory: Callable[[str], Any] = create_peer_connection,
        on_track: Optional[Callable[[str, Any], None]] = None,
        on_closed: Optional[Callable[[str, "NegotiationSession"], None]] = None,
        window: float = negotiation_config.RENEGOTIATION_WINDOW,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """NegotiationSession 초기화.

        Args:
            local_id: 내 세션 ID
            remote_id: 상대 세션 ID
            media: 송신 트랙 관리자
            signal: 시그널링 메시지 전송 함수 ``await signal(type, data)``
            pc_factory: remote_id 를 받아 피어 연결을 만드는 함수
            on_track: 원격 트랙 수신 콜백 ``on_track(remote_id, track)``
            on_closed: 세션 종료 콜백 ``on_closed(remote_id, session)``
            window: 재협상 신호를 합치는 구간 (초)
            sleep: 대기 함수 (테스트에서 가상 타이머로 교체)
        """
        self.local_id = local_id
        self.remote_id = remote_id
        self.pc = pc_factory(remote_id)
        self.state = NegotiationState.IDLE
        self.pending_renegotiation = False

        self._media = media
        self._signal = signal
        self._on_track = on_track
        self._on_closed = on_closed
        self._window = window
        self._sleep = sleep

        self._queue: asyncio.Queue = asyncio.Queue(maxsize=negotiation_config.MAX_PENDING_OPERATIONS)
        self._worker: Optional[asyncio.Task] = None
        self._debounce_task: Optional[asyncio.Task] = None

        self._register_handlers()

    def __repr__(self) -> str:
        return f"NegotiationSession(remote={self.remote_id[:8]}, state={self.state.value})"

    @property
    def is_closed(self) -> bool:
        return self.state is NegotiationState.CLOSED

    def _register_handlers(self):
        pc = self.pc

        @pc.on("track")
        def on_track(track):
            logger.info(f"[WebRTC] 피어 {self.remote_id[:8]} {track.kind} 트랙 수신")
            if self._on_track:
                self._on_track(self.remote_id, track)

        @pc.on("connectionstatechange")
        async def on_connection_state_change():
            logger.info(f"[WebRTC] 피어 {self.remote_id[:8]} 연결 상태: {pc.connectionState}")
            if pc.connectionState == "failed" and not self.is_closed:
                await self._fail(CapabilityFailure(self.remote_id, "연결 실패 (connectionState=failed)"))

    # ------------------------------------------------------------
    # 작업 큐
    # ------------------------------------------------------------

    def start(self) -> None:
        """작업 워커를 시작합니다."""
        if self._worker is None and not self.is_closed:
            self._worker = asyncio.create_task(self._run())

    def submit(self, operation: Callable[..., Awaitable[Any]], *args) -> None:
        """협상 작업을 큐에 넣습니다. 작업은 넣은 순서대로 하나씩 실행됩니다."""
        if self.is_closed:
            logger.debug(f"[WebRTC] 종료된 세션 {self.remote_id[:8]} 작업 무시: {operation.__name__}")
            return
        self.start()
        try:
            self._queue.put_nowait((operation, args))
        except asyncio.QueueFull:
            logger.warning(f"[WebRTC] 피어 {self.remote_id[:8]} 작업 큐 가득 참 - {operation.__name__} 무시")

    async def wait_idle(self) -> None:
        """대기 중인 재협상 타이머와 큐의 작업이 모두 끝날 때까지 기다립니다."""
        if self._debounce_task is not None and not self._debounce_task.done():
            await asyncio.wait([self._debounce_task])
        await self._queue.join()

    async def _run(self):
        """큐의 작업을 순서대로 실행하는 워커 루프."""
        while not self.is_closed:
            operation, args = await self._queue.get()
            try:
                await operation(*args)
            except NegotiationConflict as e:
                logger.info(f"[WebRTC] 협상 충돌로 메시지 무시: {e}")
            except CapabilityFailure as e:
                await self._fail(e)
            except Exception as e:
                logger.error(
                    f"[WebRTC] 피어 {self.remote_id[:8]} {operation.__name__} 처리 중 오류: {e}",
                    exc_info=True,
                )
            finally:
                self._queue.task_done()

    # ------------------------------------------------------------
    # 상태 전이
    # ------------------------------------------------------------

    def _transition(self, new_state: NegotiationState) -> None:
        if new_state not in TRANSITIONS[self.state]:
            raise NegotiationConflict(
                self.remote_id, f"허용되지 않은 전이: {self.state.value} -> {new_state.value}"
            )
        logger.debug(f"[WebRTC] 피어 {self.remote_id[:8]} 상태: {self.state.value} -> {new_state.value}")
        self.state = new_state

    def _guard(self, action: str, *allowed: NegotiationState) -> bool:
        """현재 상태가 allowed 중 하나인지 확인합니다. 아니면 로그를 남기고 False."""
        if self.state in allowed:
            return True
        logger.info(
            f"[WebRTC] 피어 {self.remote_id[:8]} {action} 무시 (현재 상태: {self.state.value})"
        )
        return False

    def _after_stable(self) -> None:
        if self.pending_renegotiation:
            self._schedule_renegotiation()

    # ------------------------------------------------------------
    # 피어 연결 호출 (실패는 CapabilityFailure 로 변환)
    # ------------------------------------------------------------

    def _ensure_receivers(self) -> None:
        """송신 트랙이 없는 kind 에 수신 전용 transceiver 를 추가합니다.

        offer 에 audio/video m-line 이 모두 있어야 상대가 자기 트랙을 붙여
        answer 할 수 있습니다. 나중에 붙는 트랙은 이 transceiver 를 재사용합니다.
        """
        present = {transceiver.kind for transceiver in self.pc.getTransceivers()}
        for kind in MEDIA_KINDS:
            if kind not in present:
                self.pc.addTransceiver(kind, direction="recvonly")

    def _local_description(self) -> dict:
        return {"sdp": self.pc.localDescription.sdp, "type": self.pc.localDescription.type}

    async def _create_offer(self) -> dict:
        try:
            self._ensure_receivers()
            offer = await self.pc.createOffer()
            await self.pc.setLocalDescription(offer)
        except Exception as e:
            raise CapabilityFailure(self.remote_id, f"offer 생성 실패: {e}", e) from e
        return self._local_description()

    async def _create_answer(self) -> dict:
        try:
            answer = await self.pc.createAnswer()
            await self.pc.setLocalDescription(answer)
        except Exception as e:
            raise CapabilityFailure(self.remote_id, f"answer 생성 실패: {e}", e) from e
        return self._local_description()

    async def _apply_remote(self, description: dict) -> None:
        try:
            await self.pc.setRemoteDescription(
                RTCSessionDescription(sdp=description["sdp"], type=description["type"])
            )
        except Exception as e:
            raise CapabilityFailure(self.remote_id, f"remote description 적용 실패: {e}", e) from e

    # ------------------------------------------------------------
    # 협상 동작
    # ------------------------------------------------------------

    async def initiate_call(self) -> Optional[dict]:
        """로컬 offer 를 만들어 상대에게 보냅니다.

        IDLE 또는 STABLE 에서만 유효합니다. 이미 offer 를 보내고 answer 를
        기다리는 중이면 새 요청은 버립니다 (glare 방지).

        Returns:
            Optional[dict]: 보낸 offer. 요청이 버려졌으면 None

        Raises:
            CapabilityFailure: 피어 연결이 offer 생성을 거부한 경우
        """
        if self.state in (NegotiationState.OFFER_SENT, NegotiationState.RENEGOTIATION_PENDING):
            logger.info(f"[WebRTC] 피어 {self.remote_id[:8]} offer 진행 중 - 중복 offer 요청 무시")
            return None
        if not self._guard("initiate_call", NegotiationState.IDLE, NegotiationState.STABLE):
            return None

        self._transition(NegotiationState.OFFER_SENT)
        self._media.attach_to(self, notify=False)
        offer = await self._create_offer()

        await self._signal(MSG_CALL_OFFER, {"to_id": self.remote_id, "offer": offer})
        logger.info(f"[WebRTC] 피어 {self.remote_id[:8]}에게 offer 전송")
        return offer

    async def accept_call(self, offer: dict) -> Optional[dict]:
        """상대의 offer 에 answer 합니다.

        IDLE 에서만 유효합니다. 로컬 미디어가 아직 준비되지 않았으면 준비될
        때까지 기다립니다 (이 세션의 워커만 대기하고 다른 피어는 계속 진행).

        Args:
            offer: 상대가 보낸 offer ({"sdp": ..., "type": "offer"})

        Returns:
            Optional[dict]: 보낸 answer. 상태가 맞지 않아 무시했으면 None

        Raises:
            CapabilityFailure: 피어 연결이 offer 적용/answer 생성을 거부한 경우
        """
        if not self._guard("accept_call", NegotiationState.IDLE):
            return None

        self._transition(NegotiationState.OFFER_RECEIVED)

        if not self._media.is_ready:
            logger.info(f"[WebRTC] 피어 {self.remote_id[:8]} 로컬 미디어 준비 대기 중...")
        await self._media.wait_ready()

        await self._apply_remote(offer)
        # Add local tracks before creating answer
        self._media.attach_to(self, notify=False)
        answer = await self._create_answer()
        self._transition(NegotiationState.STABLE)

        await self._signal(MSG_CALL_ANSWER, {"to_id": self.remote_id, "answer": answer})
        logger.info(f"[WebRTC] 피어 {self.remote_id[:8]}에게 answer 전송 - 연결 안정화")
        self._after_stable()
        return answer

    async def complete_call(self, answer: dict) -> bool:
        """상대의 answer 를 적용합니다.

        OFFER_SENT 에서만 유효합니다. 그 외 상태에서 받은 answer 는 중복이거나
        이미 재연결된 뒤 늦게 도착한 것이므로 로그만 남기고 무시합니다.

        Returns:
            bool: 적용 여부
        """
        if not self._guard("complete_call", NegotiationState.OFFER_SENT):
            return False

        await self._apply_remote(answer)
        self._transition(NegotiationState.STABLE)
        logger.info(f"[WebRTC] 피어 {self.remote_id[:8]} answer 적용 - 연결 안정화")
        self._after_stable()
        return True

    def renegotiation_needed(self) -> None:
        """재협상이 필요하다는 신호를 받습니다.

        첫 신호 이후 window 동안 들어온 신호는 하나의 offer 로 합쳐집니다.
        STABLE 이 아니면 플래그만 세워두고, STABLE 이 되는 시점에 처리합니다.
        """
        if self.is_closed:
            return
        self.pending_renegotiation = True
        if self.state is NegotiationState.STABLE:
            self._schedule_renegotiation()

    def _schedule_renegotiation(self) -> None:
        if self._debounce_task is None or self._debounce_task.done():
            self._debounce_task = asyncio.create_task(self._debounce())

    async def _debounce(self):
        await self._sleep(self._window)
        self.submit(self._renegotiate)

    async def _renegotiate(self) -> Optional[dict]:
        """대기 중인 재협상 신호를 하나의 offer 로 보냅니다."""
        if not self.pending_renegotiation:
            return None
        if self.state is not NegotiationState.STABLE:
            # STABLE 로 돌아오면 _after_stable 에서 다시 예약됨
            return None

        self.pending_renegotiation = False
        self._transition(NegotiationState.RENEGOTIATION_PENDING)
        offer = await self._create_offer()

        await self._signal(MSG_RENEGOTIATION_OFFER, {"to_id": self.remote_id, "offer": offer})
        logger.info(f"[WebRTC] 피어 {self.remote_id[:8]}에게 재협상 offer 전송")
        return offer

    async def complete_renegotiation(self, answer: dict) -> bool:
        """재협상 answer 를 적용합니다. RENEGOTIATION_PENDING 에서만 유효합니다."""
        if not self._guard("complete_renegotiation", NegotiationState.RENEGOTIATION_PENDING):
            return False

        await self._apply_remote(answer)
        self._transition(NegotiationState.STABLE)
        logger.info(f"[WebRTC] 피어 {self.remote_id[:8]} 재협상 완료")
        self._after_stable()
        return True

    async def accept_renegotiation(self, offer: dict) -> Optional[dict]:
        """상대의 재협상 offer 에 answer 합니다. STABLE 에서만 유효합니다.

        Note:
            재협상 중에는 트랙을 추가하지 않습니다. setRemoteDescription 이후에
            트랙을 추가하면 aiortc createAnswer() 의 transceiver 매칭이 깨집니다.
            추가할 트랙이 있으면 이후 이쪽에서 별도 재협상을 시작합니다.
        """
        if not self._guard("accept_renegotiation", NegotiationState.STABLE):
            return None

        self._transition(NegotiationState.OFFER_RECEIVED)
        await self._apply_remote(offer)
        answer = await self._create_answer()
        self._transition(NegotiationState.STABLE)

        await self._signal(MSG_RENEGOTIATION_ANSWER, {"to_id": self.remote_id, "answer": answer})
        logger.info(f"[WebRTC] 피어 {self.remote_id[:8]}에게 재협상 answer 전송")
        self._after_stable()
        return answer

    # ------------------------------------------------------------
    # 종료
    # ------------------------------------------------------------

    async def teardown(self) -> None:
        """피어 연결을 닫고 CLOSED 상태로 전환합니다.

        어느 상태에서든 호출할 수 있으며 여러 번 호출해도 안전합니다.
        진행 중인 협상 작업과 재협상 타이머는 즉시 취소됩니다.
        """
        if self.is_closed:
            return
        self._transition(NegotiationState.CLOSED)
        self.pending_renegotiation = False

        current = asyncio.current_task()
        for task in (self._debounce_task, self._worker):
            if task is not None and task is not current and not task.done():
                task.cancel()

        # 대기 중인 작업은 실행하지 않고 버림
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()

        try:
            await self.pc.close()
        except Exception as e:
            logger.warning(f"[WebRTC] 피어 {self.remote_id[:8]} 연결 종료 중 오류: {e}")

        logger.info(f"[WebRTC] 피어 {self.remote_id[:8]} 협상 세션 종료")
        if self._on_closed:
            self._on_closed(self.remote_id, self)

    async def _fail(self, error: CapabilityFailure) -> None:
        logger.warning(f"[WebRTC] 피어 연결 오류로 세션 정리: {error}")
        await self.teardown()
