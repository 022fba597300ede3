"""클라이언트 측 Transport Channel.

``websockets``로 시그널링 서버에 연결하고, 이벤트를 전송하며,
수신한 메시지를 등록된 핸들러에 전달합니다.
"""
import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, List, Optional, Set

import websockets
from websockets.exceptions import ConnectionClosed

from ..shared import messages

logger = logging.getLogger(__name__)

MessageHandler = Callable[[Optional[str], Any], Awaitable[None]]
CloseHandler = Callable[[], Awaitable[None]]


class SignalingClient:
    """시그널링 서버와의 WebSocket 연결.

    수신한 메시지마다 핸들러를 별도 태스크로 실행합니다. 태스크는 도착
    순서대로 시작되며, 한 핸들러가 미디어 엔진을 기다리는 동안에도 다음
    메시지(예: call-ended)를 처리할 수 있습니다.

    Attributes:
        url (str): 시그널링 서버 WebSocket URL
        websocket: 연결된 websockets 클라이언트 연결
    """

    def __init__(self, url: str):
        self.url = url
        self.websocket = None
        self._handlers: List[MessageHandler] = []
        self._close_handlers: List[CloseHandler] = []

        # Keep references so handler tasks are not garbage collected
        self._tasks: Set[asyncio.Task] = set()

    def add_handler(self, handler: MessageHandler) -> None:
        self._handlers.append(handler)

    def add_close_handler(self, handler: CloseHandler) -> None:
        self._close_handlers.append(handler)

    async def connect(self) -> None:
        self.websocket = await websockets.connect(self.url)
        logger.info(f"시그널링 서버 연결: {self.url}")

    async def emit(self, event: str, data: Any = None) -> None:
        if self.websocket is None:
            raise ConnectionError("signaling channel is not connected")
        await self.websocket.send(json.dumps(messages.envelope(event, data)))

    async def register(self, name: str) -> None:
        await self.emit(messages.EVENT_REGISTER, {"name": name})

    async def run(self) -> None:
        """연결이 닫힐 때까지 메시지를 수신합니다."""
        try:
            async for raw in self.websocket:
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning(f"JSON이 아닌 메시지 무시: {raw!r}")
                    continue
                if not isinstance(message, dict):
                    logger.warning(f"형식이 잘못된 메시지 무시: {message!r}")
                    continue
                self._dispatch(message.get("type"), message.get("data"))
        except ConnectionClosed as e:
            logger.warning(f"시그널링 연결 끊김: {e}")
        finally:
            for handler in self._close_handlers:
                await handler()

    def _dispatch(self, event: Optional[str], data: Any) -> None:
        for handler in self._handlers:
            task = asyncio.create_task(self._run_handler(handler, event, data))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run_handler(self, handler: MessageHandler, event: Optional[str], data: Any) -> None:
        try:
            await handler(event, data)
        except Exception as e:
            logger.error(f"'{event}' 메시지 처리 중 오류: {e}", exc_info=True)

    async def close(self) -> None:
        if self.websocket is not None:
            await self.websocket.close()
            self.websocket = None
