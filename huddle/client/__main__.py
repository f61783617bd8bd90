"""커맨드라인 참가자 클라이언트.

Usage:
    python -m huddle.client --room ABC123 --identity alice@x.com
    python -m huddle.client --room ABC123 --identity bot --synthetic
"""

import argparse
import asyncio
import logging
import os

from huddle.errors import AdmissionError, MediaAcquisitionFailure
from huddle.webrtc import LocalMedia, MediaTrackCoordinator, acquire_local_media
from huddle.webrtc.config import MediaConfig
from .config import client_config
from .controller import ClientSessionController, RemoteParticipant
from .transport import SignalingClient

logger = logging.getLogger("huddle.client")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Huddle 화상 세션 참가 클라이언트")
    parser.add_argument("--room", required=True, help="입장할 룸 코드")
    parser.add_argument("--identity", required=True, help="표시 이름")
    parser.add_argument("--url", default=client_config.SIGNALING_URL, help="시그널링 서버 WebSocket URL")
    parser.add_argument("--synthetic", action="store_true", help="실제 장치 대신 테스트 트랙 사용")
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "INFO"), help="로그 레벨")
    return parser.parse_args(argv)


def _print_track(participant: RemoteParticipant, track) -> None:
    logger.info(f"[Client] {participant.identity} ({participant.session_id[:8]}) {track.kind} 트랙 수신")


async def run(args: argparse.Namespace) -> int:
    transport = SignalingClient(args.url)
    controller = ClientSessionController(
        transport,
        MediaTrackCoordinator(),
        on_remote_track=_print_track,
    )

    config = MediaConfig(SOURCE="synthetic") if args.synthetic else MediaConfig()
    try:
        local: LocalMedia = acquire_local_media(config)
    except MediaAcquisitionFailure as e:
        logger.error(f"[Client] 로컬 미디어를 사용할 수 없습니다: {e}")
        return 1
    if local.audio_only:
        logger.warning("[Client] 카메라 없이 오디오만으로 참가합니다")

    await transport.connect()
    run_task = asyncio.create_task(controller.run())
    try:
        await controller.start_media(local)
        participants = await controller.join(args.room, args.identity)
        logger.info(f"[Client] 룸 {args.room} 입장 완료 - 기존 참가자 {len(participants)}명")
        await run_task
    except AdmissionError as e:
        logger.error(f"[Client] {e}")
        return 2
    finally:
        await controller.leave()
        await transport.close()
        if not run_task.done():
            run_task.cancel()
    return 0


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("[Client] 종료")
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
