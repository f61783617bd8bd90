"""피어 연결 생성 모듈.

원격 참가자 한 명당 하나의 aiortc ``RTCPeerConnection`` 을 생성합니다.
암호화, ICE, RTP 처리는 모두 aiortc 가 담당하며 이 프로젝트는
offer/answer 협상만 다룹니다.
"""

import logging
from typing import List

from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection

from .config import ice_config

logger = logging.getLogger(__name__)


def get_ice_servers() -> List[dict]:
    """STUN/TURN 서버 목록을 브라우저 형식(dict)으로 반환합니다.

    Returns:
        List[dict]: ``{"urls": ..., "username": ..., "credential": ...}`` 리스트
            - 커스텀 STUN (설정된 경우)
            - 공개 STUN (fallback)
            - TURN (설정된 경우만)
    """
    ice_servers = []

    if ice_config.STUN_SERVER_URL:
        ice_servers.append({"urls": ice_config.STUN_SERVER_URL})

    for stun_url in ice_config.DEFAULT_STUN_SERVERS:
        ice_servers.append({"urls": stun_url})

    if ice_config.has_turn_server:
        ice_servers.append({
            "urls": ice_config.TURN_SERVER_URL,
            "username": ice_config.TURN_USERNAME,
            "credential": ice_config.TURN_CREDENTIAL,
        })

    return ice_servers


def build_rtc_configuration() -> RTCConfiguration:
    """aiortc RTCConfiguration 을 생성합니다."""
    servers = [
        RTCIceServer(urls=[s["urls"]], username=s.get("username"), credential=s.get("credential"))
        for s in get_ice_servers()
    ]
    return RTCConfiguration(iceServers=servers)


def create_peer_connection(remote_id: str) -> RTCPeerConnection:
    """원격 세션 하나를 위한 RTCPeerConnection 을 생성합니다.

    Args:
        remote_id: 연결 상대 세션 ID (로그용)

    Returns:
        RTCPeerConnection: 새 피어 연결
    """
    pc = RTCPeerConnection(configuration=build_rtc_configuration())
    logger.info(
        f"[WebRTC] RTCPeerConnection 생성: remote={remote_id[:8]}, TURN={ice_config.has_turn_server}"
    )
    return pc
