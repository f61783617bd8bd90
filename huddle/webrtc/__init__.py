"""WebRTC 클라이언트 모듈.

aiortc 피어 연결 위에서 참가자별 offer/answer 협상과 송신 트랙 관리를 제공합니다.

Classes:
    NegotiationSession: 원격 참가자 한 명과의 협상 상태 머신
    NegotiationState: 협상 상태
    MediaTrackCoordinator: 송신 트랙/sender 관리
    OutboundTrack: enabled 플래그를 가진 송신 트랙
    LocalMedia: 획득한 로컬 트랙

Functions:
    create_peer_connection: RTCPeerConnection 생성
    get_ice_servers: STUN/TURN 서버 목록
    acquire_local_media: 카메라/마이크 획득 (오디오 fallback)
    acquire_screen_track: 화면 캡처 트랙 획득

Config:
    ice_config: ICE 서버 설정
    negotiation_config: 재협상 구간 등 협상 설정
    media_config: 로컬 장치 설정
"""

from .config import ice_config, negotiation_config, media_config
from .connection import create_peer_connection, get_ice_servers
from .tracks import OutboundTrack
from .negotiation import NegotiationSession, NegotiationState
from .media import MediaTrackCoordinator
from .devices import LocalMedia, acquire_local_media, acquire_screen_track

__all__ = [
    # Classes
    "NegotiationSession",
    "NegotiationState",
    "MediaTrackCoordinator",
    "OutboundTrack",
    "LocalMedia",
    # Functions
    "create_peer_connection",
    "get_ice_servers",
    "acquire_local_media",
    "acquire_screen_track",
    # Config
    "ice_config",
    "negotiation_config",
    "media_config",
]
