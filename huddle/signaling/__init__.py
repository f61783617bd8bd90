"""시그널링 릴레이 모듈.

룸/세션 레지스트리와 참가자 간 협상 메시지 중계를 제공합니다.

Classes:
    RoomManager: 룸 레지스트리 및 릴레이
    Participant: 참가자 세션 데이터 클래스
    JoinResult: 입장 결과

Config:
    room_config: 룸 정원/전송 타임아웃 설정
    server_config: 서버 호스트/포트 설정
"""

from .room_manager import RoomManager, Participant, JoinResult
from .config import room_config, server_config, RoomConfig, ServerConfig

__all__ = [
    # Classes
    "RoomManager",
    "Participant",
    "JoinResult",
    # Config
    "room_config",
    "server_config",
    "RoomConfig",
    "ServerConfig",
]
