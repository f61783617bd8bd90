"""시그널링 서버 설정.

룸 정원, 메시지 전송 타임아웃 등 릴레이 관련 상수와 환경변수 기반 설정.
"""

import os
import logging
from pathlib import Path
from dataclasses import dataclass

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_env_path = Path(__file__).parent.parent.parent / "config" / ".env"
load_dotenv(_env_path)


# ============================================================
# 룸 설정
# ============================================================

@dataclass(frozen=True)
class RoomConfig:
    """룸 관리 설정."""

    # 룸당 최대 참가자 수 (입장 시에만 검사하는 고정 상한)
    MAX_PARTICIPANTS: int = 10

    # 단일 메시지 전송 타임아웃 (초). 초과 시 해당 세션은 끊긴 것으로 처리
    SEND_TIMEOUT: float = float(os.getenv("SIGNALING_SEND_TIMEOUT", "5.0"))


# ============================================================
# 서버 설정
# ============================================================

@dataclass(frozen=True)
class ServerConfig:
    """HTTP/WebSocket 서버 설정."""

    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8000"))


# ============================================================
# 싱글톤 인스턴스
# ============================================================

room_config = RoomConfig()
server_config = ServerConfig()

logger.info(f"[Signaling Config] .env 경로: {_env_path} (존재: {_env_path.exists()})")
logger.info(f"[Signaling Config] 룸 최대 인원: {room_config.MAX_PARTICIPANTS}")
