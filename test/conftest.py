"""테스트 공용 fixture 와 가짜 객체.

피어 연결(aiortc RTCPeerConnection), websocket, 시그널링 클라이언트를
메모리 상의 가짜 객체로 대체합니다.
"""

import asyncio
import inspect
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

import pytest
from aiortc import AudioStreamTrack, RTCSessionDescription, VideoStreamTrack

from huddle.signaling import RoomManager
from huddle.webrtc.media import MediaTrackCoordinator


# ------------------------------------------------------------
# 시그널링 릴레이
# ------------------------------------------------------------

class FakeWebSocket:
    """``send_json`` 만 가진 가짜 연결. 전송 기록을 공유 로그에도 남깁니다."""

    def __init__(self, name: str, log: Optional[list] = None, fail: bool = False):
        self.name = name
        self.sent: List[dict] = []
        self.log = log if log is not None else []
        self.fail = fail

    async def send_json(self, message: dict):
        if self.fail:
            raise ConnectionError(f"{self.name} disconnected")
        self.sent.append(message)
        self.log.append((self.name, message["type"]))

    def types(self) -> List[str]:
        return [m["type"] for m in self.sent]

    def last(self, message_type: str) -> dict:
        return [m for m in self.sent if m["type"] == message_type][-1]["data"]


@pytest.fixture
def manager():
    return RoomManager(capacity=10, send_timeout=1.0)


@pytest.fixture
def delivery_log():
    return []


# ------------------------------------------------------------
# 피어 연결
# ------------------------------------------------------------

class FakeSender:
    def __init__(self, track):
        self.track = track
        self.fail_next = False
        self.replaced: List[Any] = []

    def replaceTrack(self, track):
        if self.fail_next:
            self.fail_next = False
            raise RuntimeError("replaceTrack rejected")
        self.track = track
        self.replaced.append(track)


class FakeTransceiver:
    def __init__(self, kind: str, direction: str, sender: Optional[FakeSender] = None):
        self.kind = kind
        self.direction = direction
        self.sender = sender


class FakePeerConnection:
    """aiortc RTCPeerConnection 의 협상 관련 부분만 흉내낸 객체."""

    created: List["FakePeerConnection"] = []

    def __init__(self, remote_id: str = "", fail_on: tuple = ()):
        self.remote_id = remote_id
        self.fail_on = set(fail_on)
        self.handlers: Dict[str, List[Callable]] = defaultdict(list)
        self.senders: List[FakeSender] = []
        self.transceivers: List[FakeTransceiver] = []
        self.localDescription = None
        self.remoteDescription = None
        self.connectionState = "new"
        self.close_count = 0
        self._counter = 0
        FakePeerConnection.created.append(self)

    def on(self, event: str):
        def decorator(handler):
            self.handlers[event].append(handler)
            return handler
        return decorator

    async def emit(self, event: str, *args):
        for handler in self.handlers[event]:
            result = handler(*args)
            if inspect.isawaitable(result):
                await result

    def _check(self, name: str):
        if name in self.fail_on:
            raise ValueError(f"{name} rejected")

    def addTrack(self, track):
        self._check("addTrack")
        sender = FakeSender(track)
        self.senders.append(sender)
        # aiortc 처럼 같은 kind 의 수신 전용 transceiver 가 있으면 재사용
        for transceiver in self.transceivers:
            if transceiver.kind == track.kind and transceiver.sender is None:
                transceiver.sender = sender
                transceiver.direction = "sendrecv"
                return sender
        self.transceivers.append(FakeTransceiver(track.kind, "sendrecv", sender))
        return sender

    def addTransceiver(self, kind: str, direction: str = "sendrecv"):
        transceiver = FakeTransceiver(kind, direction)
        self.transceivers.append(transceiver)
        return transceiver

    def getTransceivers(self):
        return list(self.transceivers)

    def getSenders(self):
        return list(self.senders)

    async def createOffer(self):
        self._check("createOffer")
        self._counter += 1
        return RTCSessionDescription(sdp=f"offer-{self._counter}", type="offer")

    async def createAnswer(self):
        self._check("createAnswer")
        self._counter += 1
        return RTCSessionDescription(sdp=f"answer-{self._counter}", type="answer")

    async def setLocalDescription(self, description):
        self._check("setLocalDescription")
        self.localDescription = description

    async def setRemoteDescription(self, description):
        self._check("setRemoteDescription")
        self.remoteDescription = description

    async def close(self):
        self.close_count += 1
        self.connectionState = "closed"


@pytest.fixture
def pc_factory():
    FakePeerConnection.created = []
    return FakePeerConnection


# ------------------------------------------------------------
# 미디어
# ------------------------------------------------------------

class FakeProxy:
    """MediaRelay.subscribe() 결과 대용. 어떤 원본을 구독했는지 기록합니다."""

    def __init__(self, source):
        self.source = source
        self.kind = source.kind
        self.stopped = False

    def stop(self):
        self.stopped = True


class FakeRelay:
    def subscribe(self, track, buffered=True):
        return FakeProxy(track)


class FakeMedia:
    """NegotiationSession 단위 테스트용 최소 미디어 관리자."""

    def __init__(self, ready: bool = True):
        self._ready = asyncio.Event()
        if ready:
            self._ready.set()
        self.attached: List[Any] = []

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    async def wait_ready(self):
        await self._ready.wait()

    def set_ready(self):
        self._ready.set()

    def attach_to(self, session, notify: bool = True) -> int:
        self.attached.append((session, notify))
        return 0


@pytest.fixture
def local_tracks():
    return [AudioStreamTrack(), VideoStreamTrack()]


@pytest.fixture
def media():
    return MediaTrackCoordinator(relay=FakeRelay())


# ------------------------------------------------------------
# 시그널링 전송 / 타이머
# ------------------------------------------------------------

class FakeTransport:
    """보낸 메시지를 기록하는 가짜 시그널링 클라이언트."""

    def __init__(self):
        self.sent: List[tuple] = []
        self._incoming: asyncio.Queue = asyncio.Queue()

    async def send(self, message_type: str, data: Optional[dict] = None):
        self.sent.append((message_type, data or {}))

    def types(self) -> List[str]:
        return [t for t, _ in self.sent]

    def of(self, message_type: str) -> List[dict]:
        return [d for t, d in self.sent if t == message_type]

    def push(self, message_type: str, data: dict):
        self._incoming.put_nowait({"type": message_type, "data": data})

    def close_stream(self):
        self._incoming.put_nowait(None)

    async def messages(self):
        while True:
            message = await self._incoming.get()
            if message is None:
                return
            yield message


class ManualTimer:
    """재협상 대기 시간을 테스트에서 직접 끝내는 가상 타이머."""

    def __init__(self):
        self.calls: List[float] = []
        self._release = asyncio.Event()

    async def sleep(self, delay: float):
        self.calls.append(delay)
        await self._release.wait()
        self._release = asyncio.Event()

    def fire(self):
        self._release.set()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def timer():
    return ManualTimer()


async def settle(rounds: int = 5):
    """예약된 콜백/태스크가 실행되도록 이벤트 루프를 몇 번 양보합니다."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def offer(sdp: str = "remote-offer") -> dict:
    return {"sdp": sdp, "type": "offer"}


def answer(sdp: str = "remote-answer") -> dict:
    return {"sdp": sdp, "type": "answer"}
