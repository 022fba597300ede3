"""WebRTC 시그널링 WebSocket 라우터.

접속자 등록과 1:1 통화 핸드셰이크(offer/answer/ICE candidate/종료)
메시지 중계를 위한 WebSocket 엔드포인트를 제공합니다.
"""

import json
import logging
from typing import Optional, TYPE_CHECKING

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from peercall.signaling import WebSocketChannel

if TYPE_CHECKING:
    from peercall.signaling import PresenceRegistry, SignalingRelay

logger = logging.getLogger(__name__)

router = APIRouter()

# 글로벌 매니저 참조 (app.py에서 설정됨)
_registry: Optional["PresenceRegistry"] = None
_relay: Optional["SignalingRelay"] = None


def init_managers(registry: "PresenceRegistry", relay: "SignalingRelay"):
    """레지스트리와 릴레이 인스턴스를 초기화합니다.

    app.py에서 호출하여 글로벌 참조를 설정합니다.

    Args:
        registry: PresenceRegistry 인스턴스
        relay: SignalingRelay 인스턴스
    """
    global _registry, _relay
    _registry = registry
    _relay = relay
    logger.info("시그널링 라우터 초기화 완료")


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """시그널링을 위한 WebSocket 엔드포인트.

    처리하는 메시지 타입:
        - register: 이름 등록 (name)
        - call-user: 통화 요청 전달 (targetName, offer, callerName)
        - call-accepted: 응답 전달 (targetName, answer)
        - ice-candidate: ICE candidate 전달 (targetName, candidate)
        - end-call: 통화 종료 전달 (targetName)

    연결이 끊기면 등록된 이름을 해제하고 접속자 목록을 브로드캐스트합니다.

    Args:
        websocket: FastAPI WebSocket 연결 객체
    """
    if _registry is None or _relay is None:
        logger.error("레지스트리가 초기화되지 않음")
        await websocket.close(code=1011, reason="Server not ready")
        return

    await websocket.accept()

    channel = WebSocketChannel(websocket)
    _registry.connect(channel)

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))

            raw = message.get("text")
            if raw is None:
                logger.warning(f"채널 {channel.channel_id[:8]}: 바이너리 메시지 무시")
                continue
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning(f"채널 {channel.channel_id[:8]}: JSON이 아닌 메시지 무시")
                continue
            if not isinstance(data, dict):
                logger.warning(f"채널 {channel.channel_id[:8]}: 형식이 잘못된 메시지 무시")
                continue
            await _relay.handle(channel, data.get("type"), data.get("data"))

    except WebSocketDisconnect:
        logger.info(f"채널 {channel.channel_id[:8]} 연결 끊김")
    except Exception as e:
        logger.error(f"채널 {channel.channel_id[:8]}의 WebSocket 연결 중 오류: {e}")
    finally:
        await _registry.disconnect(channel)
        logger.info(f"채널 {channel.channel_id[:8]} 정리 완료")
