"""Health Check API 라우터.

서비스 상태 확인을 위한 엔드포인트를 제공합니다.
"""

from fastapi import APIRouter, Depends

from huddle.signaling import RoomManager
from .deps import get_room_manager

router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("")
async def health_check(room_manager: RoomManager = Depends(get_room_manager)):
    """시그널링 서버 상태를 확인합니다.

    Returns:
        dict: 상태와 현재 룸/세션 수
    """
    return {
        "status": "ok",
        "signaling": room_manager.get_stats(),
    }
