"""시그널링 WebSocket 라우터.

참가자 간 협상 메시지를 중계하는 WebSocket 엔드포인트를 제공합니다.
룸 입장/퇴장, offer/answer 중계, 미디어 on/off 알림을 담당하며
SDP 내용은 해석하지 않습니다.
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from huddle.errors import AdmissionError
from huddle.signaling import RoomManager
from huddle.signaling.protocol import (
    ENVELOPE_MODELS,
    MSG_ERROR,
    MSG_GET_ROOMS,
    MSG_JOIN_REQUEST,
    MSG_LEAVE_ROOM,
    MSG_MEDIA_TOGGLE,
    MSG_ROOM_FULL,
    MSG_ROOMS_LIST,
    MSG_SESSION_ID,
    AnswerEnvelope,
    JoinRequest,
    MediaToggle,
    make_message,
)
from .deps import get_ws_room_manager

logger = logging.getLogger(__name__)

router = APIRouter()


async def _send_error(websocket: WebSocket, message: str):
    await websocket.send_json(make_message(MSG_ERROR, {"message": message}))


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, room_manager: RoomManager = Depends(get_ws_room_manager)):
    """시그널링 WebSocket 엔드포인트.

    연결마다 세션 ID 를 발급하고 (session_id 메시지), 연결이 끊기면
    해당 세션을 룸에서 퇴장시킵니다.

    처리하는 메시지 타입:
        - join_request: 룸 입장 (room_code, identity)
        - leave_room: 현재 룸에서 퇴장
        - call_offer / call_answer: 최초 연결 offer/answer 중계 (to_id)
        - renegotiation_offer / renegotiation_answer: 재협상 중계 (to_id)
        - media_toggle: 오디오/비디오 on/off 알림 (kind, enabled)
        - get_rooms: 활성 룸 목록 요청

    잘못된 메시지에는 error 로 응답하고 연결은 유지합니다.

    Args:
        websocket: FastAPI WebSocket 연결 객체
        room_manager: 앱의 룸 레지스트리
    """
    await websocket.accept()

    session_id = room_manager.new_session_id()
    logger.info(f"[Signaling] 세션 {session_id[:8]} 연결됨")

    await websocket.send_json(make_message(MSG_SESSION_ID, {"session_id": session_id}))

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                await _send_error(websocket, "invalid JSON")
                continue
            if not isinstance(message, dict):
                await _send_error(websocket, "message must be a JSON object")
                continue

            message_type = message.get("type")
            data = message.get("data") or {}

            try:
                await _dispatch(websocket, room_manager, session_id, message_type, data)
            except ValidationError as e:
                logger.warning(f"[Signaling] 세션 {session_id[:8]} {message_type} 검증 실패: {e.error_count()}개 오류")
                await _send_error(websocket, f"invalid {message_type} payload")

    except WebSocketDisconnect:
        logger.info(f"[Signaling] 세션 {session_id[:8]} 연결 끊김")
    except Exception as e:
        logger.error(f"[Signaling] 세션 {session_id[:8]} WebSocket 오류: {e}", exc_info=True)
    finally:
        room_code = await room_manager.leave(session_id)
        logger.info(f"[Signaling] 세션 {session_id[:8]} 정리 완료 (room={room_code})")


async def _dispatch(
    websocket: WebSocket,
    room_manager: RoomManager,
    session_id: str,
    message_type: Optional[str],
    data: dict,
):
    """메시지 타입별 처리."""
    if message_type == MSG_JOIN_REQUEST:
        request = JoinRequest.model_validate(data)
        try:
            await room_manager.join(request.room_code, request.identity, websocket, session_id=session_id)
        except AdmissionError as e:
            await websocket.send_json(make_message(MSG_ROOM_FULL, {
                "room_code": e.room_code,
                "capacity": e.capacity,
            }))

    elif message_type == MSG_LEAVE_ROOM:
        await room_manager.leave(session_id)

    elif message_type in ENVELOPE_MODELS:
        if room_manager.get_session_room(session_id) is None:
            await _send_error(websocket, "join a room first")
            return
        envelope = ENVELOPE_MODELS[message_type].model_validate(data)
        if isinstance(envelope, AnswerEnvelope):
            description = envelope.answer.model_dump()
        else:
            description = envelope.offer.model_dump()
        await room_manager.relay(message_type, session_id, envelope.to_id, description)

    elif message_type == MSG_MEDIA_TOGGLE:
        toggle = MediaToggle.model_validate(data)
        if not await room_manager.toggle_media(session_id, toggle.kind, toggle.enabled):
            await _send_error(websocket, "join a room first")

    elif message_type == MSG_GET_ROOMS:
        await websocket.send_json(make_message(MSG_ROOMS_LIST, {"rooms": room_manager.get_room_list()}))

    else:
        logger.warning(f"[Signaling] 알 수 없는 메시지 타입: {message_type}")
        await _send_error(websocket, f"unknown message type: {message_type}")
