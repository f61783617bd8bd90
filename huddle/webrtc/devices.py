"""로컬 미디어 장치 획득 모듈.

aiortc MediaPlayer(ffmpeg/PyAV)로 카메라, 마이크, 화면을 엽니다.
카메라를 열 수 없으면 오디오만으로 계속하고, 마이크까지 실패하면
MediaAcquisitionFailure 를 올립니다.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from aiortc import AudioStreamTrack, MediaStreamTrack, VideoStreamTrack
from aiortc.contrib.media import MediaPlayer

from huddle.errors import MediaAcquisitionFailure
from .config import MediaConfig, media_config

logger = logging.getLogger(__name__)


@dataclass
class LocalMedia:
    """획득한 로컬 트랙.

    Attributes:
        tracks (List[MediaStreamTrack]): 오디오 (+ 비디오) 원본 트랙
        audio_only (bool): 카메라 없이 오디오만 획득했는지 여부
    """

    tracks: List[MediaStreamTrack] = field(default_factory=list)
    audio_only: bool = False

    @property
    def video(self) -> Optional[MediaStreamTrack]:
        return next((t for t in self.tracks if t.kind == "video"), None)


def _open_camera(config: MediaConfig) -> MediaStreamTrack:
    player = MediaPlayer(
        config.CAMERA_DEVICE,
        format=config.CAMERA_FORMAT,
        options={"video_size": config.CAMERA_SIZE, "framerate": config.CAMERA_FRAMERATE},
    )
    if player.video is None:
        raise MediaAcquisitionFailure(f"카메라 비디오 스트림 없음: {config.CAMERA_DEVICE}")
    return player.video


def _open_microphone(config: MediaConfig) -> MediaStreamTrack:
    player = MediaPlayer(config.MICROPHONE_DEVICE, format=config.MICROPHONE_FORMAT)
    if player.audio is None:
        raise MediaAcquisitionFailure(f"마이크 오디오 스트림 없음: {config.MICROPHONE_DEVICE}")
    return player.audio


def acquire_local_media(config: MediaConfig = media_config) -> LocalMedia:
    """카메라와 마이크를 엽니다.

    Args:
        config: 장치 설정 (SOURCE="synthetic" 이면 aiortc 테스트 트랙 사용)

    Returns:
        LocalMedia: 획득한 트랙 (카메라 실패 시 audio_only=True)

    Raises:
        MediaAcquisitionFailure: 마이크를 열 수 없는 경우
    """
    if config.SOURCE == "synthetic":
        logger.info("[Media] synthetic 모드 - 테스트 오디오/비디오 트랙 사용")
        return LocalMedia(tracks=[AudioStreamTrack(), VideoStreamTrack()])

    try:
        audio = _open_microphone(config)
    except Exception as e:
        logger.error(f"[Media] 마이크 획득 실패: {e}")
        raise MediaAcquisitionFailure(f"마이크를 열 수 없습니다: {e}") from e

    try:
        video = _open_camera(config)
    except Exception as e:
        logger.warning(f"[Media] 카메라 획득 실패 - 오디오만 사용: {e}")
        return LocalMedia(tracks=[audio], audio_only=True)

    logger.info("[Media] 카메라/마이크 획득 완료")
    return LocalMedia(tracks=[audio, video])


def acquire_screen_track(config: MediaConfig = media_config) -> MediaStreamTrack:
    """화면 캡처 트랙을 엽니다.

    Raises:
        MediaAcquisitionFailure: 화면 캡처 장치를 열 수 없는 경우
    """
    if config.SOURCE == "synthetic":
        return VideoStreamTrack()

    try:
        player = MediaPlayer(
            config.SCREEN_DEVICE,
            format=config.SCREEN_FORMAT,
            options={"framerate": config.SCREEN_FRAMERATE},
        )
    except Exception as e:
        logger.error(f"[Media] 화면 캡처 실패: {e}")
        raise MediaAcquisitionFailure(f"화면 캡처를 열 수 없습니다: {e}") from e

    if player.video is None:
        raise MediaAcquisitionFailure(f"화면 캡처 비디오 스트림 없음: {config.SCREEN_DEVICE}")
    return player.video
