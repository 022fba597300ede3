"""시그널링 서버 모듈.

Classes:
    PresenceRegistry: 접속자 이름 ↔ 채널 관리
    SignalingRelay: 핸드셰이크 메시지 라우팅
    WebSocketChannel: FastAPI WebSocket 채널 래퍼
"""

from .channel import Channel, WebSocketChannel
from .registry import PresenceRegistry
from .relay import SignalingRelay

__all__ = [
    "Channel",
    "WebSocketChannel",
    "PresenceRegistry",
    "SignalingRelay",
]
