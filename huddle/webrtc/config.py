"""WebRTC 모듈 설정.

TURN/STUN 서버, 협상(재협상 디바운스) 설정, 로컬 미디어 장치 등
클라이언트 측 WebRTC 관련 상수와 환경변수 기반 설정.
"""

import os
import logging
from pathlib import Path
from dataclasses import dataclass
from typing import Optional

# 환경변수 로드 (상위에서 이미 로드됨)
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_env_path = Path(__file__).parent.parent.parent / "config" / ".env"
load_dotenv(_env_path)


# ============================================================
# ICE Server 설정
# ============================================================

@dataclass(frozen=True)
class ICEServerConfig:
    """ICE 서버 설정."""

    # TURN 서버
    TURN_SERVER_URL: Optional[str] = os.getenv("TURN_SERVER_URL")
    TURN_USERNAME: Optional[str] = os.getenv("TURN_USERNAME")
    TURN_CREDENTIAL: Optional[str] = os.getenv("TURN_CREDENTIAL")

    # STUN 서버
    STUN_SERVER_URL: Optional[str] = os.getenv("STUN_SERVER_URL")

    # 기본 공개 STUN 서버 (fallback)
    DEFAULT_STUN_SERVERS: tuple = (
        "stun:stun.l.google.com:19302",
        "stun:global.stun.twilio.com:3478",
    )

    @property
    def has_turn_server(self) -> bool:
        """TURN 서버 설정 완료 여부."""
        return all([self.TURN_SERVER_URL, self.TURN_USERNAME, self.TURN_CREDENTIAL])


# ============================================================
# 협상 설정
# ============================================================

@dataclass(frozen=True)
class NegotiationConfig:
    """offer/answer 협상 관련 설정."""

    # 재협상 신호를 하나로 합치는 구간 (초)
    RENEGOTIATION_WINDOW: float = float(os.getenv("RENEGOTIATION_WINDOW", "0.1"))

    # 원격 피어별 대기 가능한 협상 작업 수
    MAX_PENDING_OPERATIONS: int = 64


# ============================================================
# 로컬 미디어 장치 설정
# ============================================================

@dataclass(frozen=True)
class MediaConfig:
    """카메라/마이크/화면 캡처 장치 설정.

    장치 이름과 포맷은 ffmpeg(PyAV) 입력 형식을 따릅니다.
    예: Linux 카메라 ``/dev/video0`` + ``v4l2``, 마이크 ``default`` + ``pulse``,
    화면 ``:0.0`` + ``x11grab``.
    """

    # "device": 실제 장치 사용, "synthetic": 테스트용 무음/단색 트랙
    SOURCE: str = os.getenv("MEDIA_SOURCE", "device")

    CAMERA_DEVICE: str = os.getenv("CAMERA_DEVICE", "/dev/video0")
    CAMERA_FORMAT: str = os.getenv("CAMERA_FORMAT", "v4l2")
    CAMERA_SIZE: str = os.getenv("CAMERA_SIZE", "640x480")
    CAMERA_FRAMERATE: str = os.getenv("CAMERA_FRAMERATE", "30")

    MICROPHONE_DEVICE: str = os.getenv("MICROPHONE_DEVICE", "default")
    MICROPHONE_FORMAT: str = os.getenv("MICROPHONE_FORMAT", "pulse")

    SCREEN_DEVICE: str = os.getenv("SCREEN_DEVICE", ":0.0")
    SCREEN_FORMAT: str = os.getenv("SCREEN_FORMAT", "x11grab")
    SCREEN_FRAMERATE: str = os.getenv("SCREEN_FRAMERATE", "15")


# ============================================================
# 싱글톤 인스턴스
# ============================================================

ice_config = ICEServerConfig()
negotiation_config = NegotiationConfig()
media_config = MediaConfig()


# ============================================================
# 설정 로드 확인 로그
# ============================================================

logger.info(f"[WebRTC Config] .env 경로: {_env_path} (존재: {_env_path.exists()})")
logger.info(f"[WebRTC Config] TURN 서버 설정 완료: {ice_config.has_turn_server}")
if ice_config.STUN_SERVER_URL:
    logger.info(f"[WebRTC Config] STUN URL: {ice_config.STUN_SERVER_URL}")
else:
    logger.info(f"[WebRTC Config] STUN URL: 기본 공개 STUN 사용")
logger.info(f"[WebRTC Config] 재협상 구간: {negotiation_config.RENEGOTIATION_WINDOW}s")
logger.info(f"[WebRTC Config] 미디어 소스: {media_config.SOURCE}")
