"""접속자/ICE 설정 API 라우터."""

import logging

from fastapi import APIRouter, Request

from peercall.config import ice_config

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["presence"])


@router.get("/users")
async def get_users(request: Request):
    """현재 등록된 사용자 이름 목록을 조회합니다.

    Returns:
        dict: ``{"names": [...]}`` (등록 순서)
    """
    return {"names": request.app.state.registry.snapshot()}


@router.get("/ice-servers")
async def get_ice_servers():
    """클라이언트가 RTCPeerConnection에 사용할 ICE 서버 목록을 제공합니다.

    TURN 자격증명은 서버 환경변수에서만 관리하고 이 엔드포인트로 전달합니다.

    Returns:
        list: ICE servers 배열 (STUN + 설정된 경우 TURN)

    Examples:
        [
            {"urls": "stun:stun.l.google.com:19302"},
            {"urls": "turn:turn.example.com:3478", "username": "u", "credential": "p"}
        ]
    """
    ice_servers = ice_config.as_ice_servers()
    if ice_config.has_turn_server:
        logger.info("ICE 서버 제공: STUN + TURN")
    else:
        logger.info("ICE 서버 제공: STUN만 (TURN 미설정)")
    return ice_servers
