"""룸 조회 및 ICE 서버 API 라우터."""

from fastapi import APIRouter, Depends

from huddle.signaling import RoomManager
from huddle.webrtc.connection import get_ice_servers
from .deps import get_room_manager

router = APIRouter(prefix="/api", tags=["rooms"])


@router.get("/rooms")
async def get_rooms(room_manager: RoomManager = Depends(get_room_manager)):
    """활성화된 모든 룸의 목록을 조회합니다.

    Returns:
        dict: 룸 목록
            - rooms (List[dict]): room_code, participant_count, capacity, participants
    """
    return {"rooms": room_manager.get_room_list()}


@router.get("/ice-servers")
async def get_ice_server_list():
    """클라이언트가 사용할 STUN/TURN 서버 목록을 제공합니다.

    TURN credentials 는 서버 환경변수에서만 관리합니다.

    Returns:
        dict: ``{"ice_servers": [{"urls": ..., "username": ..., "credential": ...}]}``
    """
    return {"ice_servers": get_ice_servers()}
