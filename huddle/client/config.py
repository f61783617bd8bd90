"""클라이언트 설정."""

import os
import logging
from pathlib import Path
from dataclasses import dataclass

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_env_path = Path(__file__).parent.parent.parent / "config" / ".env"
load_dotenv(_env_path)


@dataclass(frozen=True)
class ClientConfig:
    """시그널링 서버 연결 설정."""

    SIGNALING_URL: str = os.getenv("SIGNALING_URL", "ws://localhost:8000/ws")

    # websockets keepalive
    PING_INTERVAL: float = float(os.getenv("SIGNALING_PING_INTERVAL", "20"))
    PING_TIMEOUT: float = float(os.getenv("SIGNALING_PING_TIMEOUT", "10"))

    # join_accepted / room_full 응답 대기 시간 (초)
    JOIN_TIMEOUT: float = float(os.getenv("JOIN_TIMEOUT", "10"))


client_config = ClientConfig()

logger.info(f"[Client Config] 시그널링 URL: {client_config.SIGNALING_URL}")
