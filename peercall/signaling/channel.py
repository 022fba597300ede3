"""서버 측 Transport Channel.

FastAPI WebSocket 연결 하나를 레지스트리와 릴레이가 사용하는
채널 객체로 감쌉니다.
"""

import logging
import uuid
from typing import Protocol

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class Channel(Protocol):
    """레지스트리/릴레이가 요구하는 채널 인터페이스."""

    channel_id: str

    async def send(self, message: dict) -> None:
        ...


class WebSocketChannel:
    """FastAPI ``WebSocket`` 기반 채널.

    Attributes:
        channel_id (str): 연결마다 발급되는 고유 ID (UUID)
        websocket (WebSocket): 실제 WebSocket 연결 객체
    """

    def __init__(self, websocket: WebSocket):
        self.channel_id = str(uuid.uuid4())
        self.websocket = websocket

    async def send(self, message: dict) -> None:
        await self.websocket.send_json(message)

    def __repr__(self) -> str:
        return f"WebSocketChannel({self.channel_id[:8]})"
