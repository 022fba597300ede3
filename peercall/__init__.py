"""peercall package.

1:1 WebRTC 영상통화를 위한 시그널링 서버와 클라이언트 통화 상태 머신입니다.

Modules:
    shared: 시그널링 메시지 계약
    signaling: 접속자 레지스트리 및 메시지 릴레이 (서버)
    client: 통화 상태 머신, 미디어 엔진, 시그널링 채널 (클라이언트)
    config: 환경변수 기반 설정
"""

from .signaling import PresenceRegistry, SignalingRelay, WebSocketChannel

__all__ = [
    "PresenceRegistry",
    "SignalingRelay",
    "WebSocketChannel",
]
