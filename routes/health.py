"""Health Check API 라우터.

서비스 상태 확인을 위한 엔드포인트를 제공합니다.
"""

from fastapi import APIRouter, Request

router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("")
async def health_check(request: Request):
    """시그널링 서버 상태를 확인합니다.

    Returns:
        dict: 접속자 수, 연결 수, 중계/폐기된 메시지 수
    """
    registry = request.app.state.registry
    relay = request.app.state.relay

    return {
        "status": "ok",
        "presence": {
            "users": registry.user_count,
            "connections": registry.connection_count,
        },
        "relay": {
            "routed": relay.routed_count,
            "dropped": relay.dropped_count,
        },
    }
