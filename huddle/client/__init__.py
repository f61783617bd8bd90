"""참가자 클라이언트 모듈.

Classes:
    ClientSessionController: 릴레이 이벤트 → 협상 세션/송신 트랙 연결
    RemoteParticipant: 원격 참가자 표시 상태
    SignalingClient: 시그널링 websocket 클라이언트
"""

from .controller import ClientSessionController, RemoteParticipant
from .transport import SignalingClient
from .config import client_config

__all__ = [
    "ClientSessionController",
    "RemoteParticipant",
    "SignalingClient",
    "client_config",
]
