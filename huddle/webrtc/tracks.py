"""송신 트랙 모듈.

로컬 카메라/마이크/화면 트랙을 감싸서 음소거(mute)와 카메라 끄기를
재협상 없이 처리하는 트랙을 제공합니다.
"""

import logging

import numpy as np
from aiortc import MediaStreamTrack
from aiortc.mediastreams import MediaStreamError
from av import AudioFrame, VideoFrame

logger = logging.getLogger(__name__)


def _silence(frame: AudioFrame) -> AudioFrame:
    """같은 형식의 무음 프레임을 생성합니다."""
    silent = AudioFrame(format=frame.format.name, layout=frame.layout.name, samples=frame.samples)
    for plane in silent.planes:
        plane.update(bytes(plane.buffer_size))
    silent.sample_rate = frame.sample_rate
    silent.pts = frame.pts
    silent.time_base = frame.time_base
    return silent


def _black(frame: VideoFrame) -> VideoFrame:
    """같은 크기의 검은 화면 프레임을 생성합니다."""
    black = VideoFrame.from_ndarray(np.zeros((frame.height, frame.width, 3), dtype=np.uint8), format="rgb24")
    black.pts = frame.pts
    black.time_base = frame.time_base
    return black


class OutboundTrack(MediaStreamTrack):
    """로컬 소스 트랙을 감싸 enabled 플래그를 제공하는 송신 트랙.

    브라우저의 ``track.enabled = false`` 와 같은 효과를 냅니다. 비활성화되면
    원본 프레임 대신 무음(오디오) 또는 검은 화면(비디오)을 내보내므로
    피어 연결을 재협상할 필요가 없습니다.

    Attributes:
        kind (str): 트랙 종류 ("audio" 또는 "video")
        source (MediaStreamTrack): 원본 트랙
        enabled (bool): 활성화 여부

    Note:
        - 원본 트랙이 종료되면 ("ended") 이 트랙도 함께 종료됨
        - 같은 트랙을 여러 피어 연결에 보낼 때는 MediaRelay.subscribe() 로
          연결별 복사본을 만들어야 함 (huddle/webrtc/media.py 참고)

    Examples:
        >>> camera = OutboundTrack(player.video)
        >>> camera.enabled = False  # 카메라 끄기
        >>> frame = await camera.recv()  # 검은 화면 프레임
    """

    def __init__(self, source: MediaStreamTrack):
        """OutboundTrack 초기화.

        Args:
            source (MediaStreamTrack): 감쌀 원본 트랙
        """
        super().__init__()
        self.kind = source.kind
        self.source = source
        self.enabled = True

        @source.on("ended")
        def on_source_ended():
            logger.info(f"[Media] 원본 {self.kind} 트랙 종료")
            self.stop()

    async def recv(self):
        """원본 프레임을 받아 전달합니다. 비활성화 상태면 무음/검은 화면을 반환합니다.

        Raises:
            MediaStreamError: 원본 트랙이 종료된 경우
        """
        try:
            frame = await self.source.recv()
        except MediaStreamError:
            self.stop()
            raise

        if self.enabled:
            return frame
        if self.kind == "audio":
            return _silence(frame)
        return _black(frame)

    def stop(self):
        """이 트랙과 원본 트랙을 종료합니다."""
        super().stop()
        if self.source.readyState != "ended":
            self.source.stop()
