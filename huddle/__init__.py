"""Huddle - 룸 기반 멀티 피어 화상 세션.

Modules:
    signaling: 룸 레지스트리와 협상 메시지 릴레이 (서버)
    webrtc: 피어 협상 상태 머신과 송신 트랙 관리 (클라이언트)
    client: 릴레이 이벤트를 협상 세션에 연결하는 컨트롤러와 CLI
"""

__version__ = "0.1.0"
