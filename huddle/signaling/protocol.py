"""시그널링 메시지 정의.

클라이언트와 릴레이가 주고받는 모든 메시지는 ``{"type": ..., "data": {...}}``
형태의 JSON 입니다. 이 모듈은 메시지 타입 상수와 클라이언트 → 릴레이
페이로드 검증용 pydantic 모델을 제공합니다.

SDP(offer/answer)는 릴레이 입장에서 불투명한 값이므로 형태(sdp, type)만
검증하고 내용은 해석하지 않습니다.
"""

from typing import Any, Dict, Literal

from pydantic import BaseModel, Field

# 클라이언트 -> 릴레이
MSG_JOIN_REQUEST = "join_request"
MSG_LEAVE_ROOM = "leave_room"
MSG_CALL_OFFER = "call_offer"
MSG_CALL_ANSWER = "call_answer"
MSG_GET_ROOMS = "get_rooms"

# 릴레이 -> 클라이언트
MSG_SESSION_ID = "session_id"
MSG_JOIN_ACCEPTED = "join_accepted"
MSG_ROOM_FULL = "room_full"
MSG_PARTICIPANT_JOINED = "participant_joined"
MSG_PARTICIPANT_LEFT = "participant_left"
MSG_INCOMING_CALL = "incoming_call"
MSG_CALL_ACCEPTED = "call_accepted"
MSG_ROOMS_LIST = "rooms_list"
MSG_ERROR = "error"

# 양방향 (클라이언트 -> 릴레이 -> 클라이언트)
MSG_RENEGOTIATION_OFFER = "renegotiation_offer"
MSG_RENEGOTIATION_ANSWER = "renegotiation_answer"
MSG_MEDIA_TOGGLE = "media_toggle"

# 릴레이가 대상 세션에 전달할 때 사용하는 메시지 타입과 설명 필드명
RELAY_ROUTES: Dict[str, tuple] = {
    MSG_CALL_OFFER: (MSG_INCOMING_CALL, "offer"),
    MSG_CALL_ANSWER: (MSG_CALL_ACCEPTED, "answer"),
    MSG_RENEGOTIATION_OFFER: (MSG_RENEGOTIATION_OFFER, "offer"),
    MSG_RENEGOTIATION_ANSWER: (MSG_RENEGOTIATION_ANSWER, "answer"),
}


def make_message(message_type: str, data: Dict[str, Any] = None) -> Dict[str, Any]:
    """시그널링 메시지 딕셔너리를 생성합니다."""
    return {"type": message_type, "data": data or {}}


class SessionDescription(BaseModel):
    """SDP offer/answer."""

    sdp: str
    type: Literal["offer", "answer"]


class JoinRequest(BaseModel):
    """룸 입장 요청."""

    room_code: str = Field(min_length=1, description="호출자가 정한 룸 코드")
    identity: str = Field(min_length=1, description="표시 이름 (검증하지 않음)")


class OfferEnvelope(BaseModel):
    """특정 세션으로 보내는 offer."""

    to_id: str = Field(min_length=1)
    offer: SessionDescription


class AnswerEnvelope(BaseModel):
    """특정 세션으로 보내는 answer."""

    to_id: str = Field(min_length=1)
    answer: SessionDescription


class MediaToggle(BaseModel):
    """오디오/비디오 on/off 변경 알림."""

    kind: Literal["audio", "video"]
    enabled: bool


class ParticipantInfo(BaseModel):
    """join_accepted 에 포함되는 기존 참가자 정보."""

    id: str
    identity: str
    audio_enabled: bool = True
    video_enabled: bool = True


ENVELOPE_MODELS = {
    MSG_CALL_OFFER: OfferEnvelope,
    MSG_CALL_ANSWER: AnswerEnvelope,
    MSG_RENEGOTIATION_OFFER: OfferEnvelope,
    MSG_RENEGOTIATION_ANSWER: AnswerEnvelope,
}
