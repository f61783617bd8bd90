"""공유 의존성 모듈.

라우터들이 공통으로 사용하는 의존성을 정의합니다.
"""

from fastapi import Request, WebSocket

from huddle.signaling import RoomManager


def get_room_manager(request: Request) -> RoomManager:
    """HTTP 요청에서 앱의 RoomManager 를 가져옵니다 (lifespan 에서 생성)."""
    return request.app.state.room_manager


def get_ws_room_manager(websocket: WebSocket) -> RoomManager:
    """WebSocket 연결에서 앱의 RoomManager 를 가져옵니다."""
    return websocket.app.state.room_manager
