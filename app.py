"""FastAPI 멀티 피어 화상 세션 시그널링 서버.

이 모듈은 룸 기반 멀티 피어(mesh) 화상 회의를 위한 시그널링 서버를
제공합니다. 미디어는 참가자끼리 직접 주고받으며 서버는 입장 관리와
offer/answer 중계만 담당합니다.

주요 기능:
    - 룸 기반 참가자 관리 (룸당 최대 10명)
    - 참가자 간 offer/answer, 재협상 메시지 중계
    - 실시간 참가자 입/퇴장, 미디어 on/off 알림
    - STUN/TURN 서버 정보 제공
    - CORS 설정을 통한 크로스 오리진 요청 지원

Architecture:
    - Mesh 패턴: 참가자마다 다른 모든 참가자와 피어 연결을 가짐
    - RoomManager: 룸/세션 레지스트리 및 릴레이 (lifespan 에서 생성, app.state 에 보관)
    - WebSocket: 실시간 시그널링 메시지 전송
"""
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load 환경변수 from config/.env
load_dotenv(Path(__file__).parent / "config" / ".env")

from huddle.signaling import RoomManager, room_config, server_config  # noqa: E402
from routes import health_router, rooms_router, signaling_router  # noqa: E402


# 로그 설정
os.makedirs("logs", exist_ok=True)
log_filename = f"logs/server_{datetime.now().strftime('%Y%m%d')}.log"

# 환경별 로그 레벨 설정 (환경변수로 제어)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
ENV = os.getenv("ENV", "development")

# 로그 보관 기간 (일) - 기본 60일
LOG_RETENTION_DAYS = int(os.getenv("LOG_RETENTION_DAYS", "60"))

CORS_ORIGIN_REGEX = os.getenv(
    "CORS_ORIGIN_REGEX",
    r"^http://(localhost|127\.0\.0\.1|192\.168\.\d{1,3}\.\d{1,3}):\d+$",
)


def cleanup_old_logs(log_dir: str = "logs", retention_days: int = LOG_RETENTION_DAYS) -> int:
    """오래된 로그 파일을 삭제합니다.

    Args:
        log_dir: 로그 디렉토리 경로
        retention_days: 보관 기간 (일)

    Returns:
        삭제된 파일 수
    """
    directory = Path(log_dir)
    if not directory.exists():
        return 0

    cutoff_date = datetime.now() - timedelta(days=retention_days)
    deleted_count = 0

    for log_file in directory.glob("server_*.log"):
        try:
            file_date = datetime.strptime(log_file.stem.replace("server_", ""), "%Y%m%d")
            if file_date < cutoff_date:
                log_file.unlink()
                deleted_count += 1
        except (ValueError, OSError):
            continue

    return deleted_count


logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.StreamHandler(),  # 콘솔 출력
        logging.FileHandler(log_filename, encoding="utf-8"),  # 파일 저장
    ]
)
logger = logging.getLogger(__name__)
logger.info(f"로깅 초기화 완료: level={LOG_LEVEL}, env={ENV}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI 앱의 생명주기를 관리하는 컨텍스트 매니저.

    시작 시 룸 레지스트리를 만들어 app.state 에 보관하고, 종료 시 남은
    세션을 모두 퇴장 처리합니다.

    Args:
        app (FastAPI): FastAPI 애플리케이션 인스턴스

    Yields:
        None: 앱이 실행되는 동안 제어를 반환
    """
    logger.info("시그널링 서버 시작 중...")

    deleted_logs = cleanup_old_logs()
    if deleted_logs > 0:
        logger.info(f"오래된 로그 파일 {deleted_logs}개 정리 완료 ({LOG_RETENTION_DAYS}일 이상)")

    app.state.room_manager = RoomManager(
        capacity=room_config.MAX_PARTICIPANTS,
        send_timeout=room_config.SEND_TIMEOUT,
    )

    yield

    logger.info("서버 종료 중...")
    room_manager: RoomManager = app.state.room_manager
    for session_id in list(room_manager.session_rooms):
        await room_manager.leave(session_id)
    logger.info(f"남은 세션 정리 완료: {room_manager.get_stats()}")


app = FastAPI(title="Huddle Signaling Server", lifespan=lifespan)

# CORS - 개발 환경에서는 로컬 네트워크 허용
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=CORS_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 라우터 등록
app.include_router(health_router)
app.include_router(rooms_router)
app.include_router(signaling_router)


@app.get("/")
async def root():
    """서버 상태 확인 엔드포인트.

    Returns:
        dict: 서버 상태 정보
            - status (str): "ok"
            - service (str): 서비스 이름
    """
    return {"status": "ok", "service": "Huddle Signaling Server"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=server_config.HOST, port=server_config.PORT)
