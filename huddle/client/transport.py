"""시그널링 서버 websocket 클라이언트."""

import asyncio
import json
import logging
from typing import AsyncIterator, Optional

import websockets

from huddle.signaling.protocol import make_message
from .config import client_config

logger = logging.getLogger(__name__)


class SignalingClient:
    """릴레이와 ``{"type", "data"}`` JSON 메시지를 주고받는 websocket 클라이언트.

    Examples:
        >>> client = SignalingClient("ws://localhost:8000/ws")
        >>> await client.connect()
        >>> await client.send("join_request", {"room_code": "ABC123", "identity": "alice"})
        >>> async for message in client.messages():
        ...     print(message["type"])
    """

    def __init__(self, url: str = client_config.SIGNALING_URL):
        self.url = url
        self._ws = None
        self._send_lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._ws is not None

    async def connect(self) -> None:
        logger.info(f"[Client] 시그널링 서버 연결 중: {self.url}")
        self._ws = await websockets.connect(
            self.url,
            ping_interval=client_config.PING_INTERVAL,
            ping_timeout=client_config.PING_TIMEOUT,
        )
        logger.info("[Client] 시그널링 서버 연결 완료")

    async def send(self, message_type: str, data: Optional[dict] = None) -> None:
        """메시지를 전송합니다.

        Raises:
            ConnectionError: 연결되지 않은 상태에서 호출한 경우
            websockets.exceptions.ConnectionClosed: 전송 중 연결이 끊긴 경우
        """
        if self._ws is None:
            raise ConnectionError("시그널링 서버에 연결되지 않았습니다")
        async with self._send_lock:
            await self._ws.send(json.dumps(make_message(message_type, data)))
        logger.debug(f"[Client] 전송: {message_type}")

    async def messages(self) -> AsyncIterator[dict]:
        """수신 메시지를 순서대로 yield 합니다. 연결이 닫히면 종료됩니다."""
        if self._ws is None:
            raise ConnectionError("시그널링 서버에 연결되지 않았습니다")
        try:
            async for raw in self._ws:
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning(f"[Client] JSON 파싱 실패: {raw[:100]}")
                    continue
                if not isinstance(message, dict):
                    logger.warning(f"[Client] 잘못된 메시지 형식: {type(message).__name__}")
                    continue
                yield message
        except websockets.exceptions.ConnectionClosed:
            logger.info("[Client] 시그널링 연결 종료")

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
            logger.info("[Client] 시그널링 연결 닫음")
