"""시그널링/협상 오류 정의.

멀티 피어 화상 세션에서 발생하는 오류를 분류합니다. 사용자에게 노출되는
오류는 AdmissionError와 MediaAcquisitionFailure 두 가지뿐이며, 나머지는
로그만 남기고 다음 이벤트(재협상, 재입장 등)에서 자연스럽게 복구됩니다.

Classes:
    HuddleError: 모든 오류의 기본 클래스
    AdmissionError: 룸 정원 초과로 입장 거부
    RoutingMiss: 대상 세션이 이미 사라져 메시지 전달 실패
    NegotiationConflict: 상태 머신이 순서가 맞지 않는 메시지를 거부
    MediaAcquisitionFailure: 로컬 카메라/마이크 획득 실패
    CapabilityFailure: 피어 연결(aiortc)이 SDP 등을 거부
"""

from typing import Optional


class HuddleError(Exception):
    """huddle 패키지 오류의 기본 클래스."""


class AdmissionError(HuddleError):
    """룸이 가득 차서 입장이 거부되었습니다.

    사용자에게 표시되는 오류이며, 다른 룸을 선택하는 등 사용자 조치 없이는
    재시도해도 결과가 같습니다.

    Attributes:
        room_code (str): 입장을 시도한 룸 코드
        capacity (int): 룸 최대 인원
    """

    def __init__(self, room_code: str, capacity: int):
        self.room_code = room_code
        self.capacity = capacity
        super().__init__(f"Room '{room_code}' is full ({capacity} participants)")


class RoutingMiss(HuddleError):
    """대상 세션이 존재하지 않아 메시지를 전달하지 못했습니다."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session '{session_id}' not found")


class NegotiationConflict(HuddleError):
    """협상 상태 머신의 가드가 메시지를 거부했습니다.

    중복 offer, 늦게 도착한 answer, 허용되지 않은 상태 전이 등이 해당됩니다.
    """

    def __init__(self, remote_id: str, message: str):
        self.remote_id = remote_id
        super().__init__(f"[{remote_id[:8]}] {message}")


class MediaAcquisitionFailure(HuddleError):
    """로컬 미디어 소스를 사용할 수 없습니다."""


class CapabilityFailure(HuddleError):
    """피어 연결이 협상 단계를 거부했습니다.

    해당 원격 피어와의 연결만 정리되며 다른 피어에는 영향을 주지 않습니다.

    Attributes:
        remote_id (str): 실패한 원격 세션 ID
        cause (Optional[BaseException]): 원인 예외
    """

    def __init__(self, remote_id: str, message: str, cause: Optional[BaseException] = None):
        self.remote_id = remote_id
        self.cause = cause
        super().__init__(f"[{remote_id[:8]}] {message}")
