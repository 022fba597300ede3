"""FastAPI WebRTC 1:1 Signaling Server.

이 모듈은 브라우저 두 대가 직접 P2P 영상통화를 맺을 수 있도록
핸드셰이크를 중계하는 시그널링 서버를 제공합니다. 서버는 접속 중인
사용자 이름을 관리하고, offer/answer/ICE candidate를 이름으로 라우팅할 뿐
미디어에는 관여하지 않습니다.

주요 기능:
    - 이름 기반 접속자 등록 및 목록 브로드캐스트
    - offer/answer/ICE candidate/통화 종료 메시지 중계
    - ICE 서버(STUN/TURN) 설정 제공
    - CORS 설정을 통한 크로스 오리진 요청 지원

Architecture:
    - PresenceRegistry: 이름 → WebSocket 채널 매핑
    - SignalingRelay: 상태 없는 메시지 라우터
    - WebSocket: 실시간 시그널링 메시지 전송
"""
import glob
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timedelta

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from peercall import PresenceRegistry, SignalingRelay
from peercall.config import server_config
from routes import (
    health_router, presence_router,
    signaling_router, init_signaling_managers,
)


# 로그 설정
os.makedirs(server_config.LOG_DIR, exist_ok=True)
log_filename = os.path.join(server_config.LOG_DIR, f"server_{datetime.now().strftime('%Y%m%d')}.log")


def cleanup_old_logs(log_dir: str = server_config.LOG_DIR,
                     retention_days: int = server_config.LOG_RETENTION_DAYS) -> int:
    """오래된 로그 파일을 삭제합니다.

    Args:
        log_dir: 로그 디렉토리 경로
        retention_days: 보관 기간 (일)

    Returns:
        삭제된 파일 수
    """
    if not os.path.exists(log_dir):
        return 0

    cutoff_date = datetime.now() - timedelta(days=retention_days)
    deleted_count = 0

    for log_file in glob.glob(os.path.join(log_dir, "server_*.log")):
        try:
            date_str = os.path.basename(log_file).replace("server_", "").replace(".log", "")
            file_date = datetime.strptime(date_str, "%Y%m%d")

            if file_date < cutoff_date:
                os.remove(log_file)
                deleted_count += 1
        except (ValueError, OSError):
            continue

    return deleted_count


logging.basicConfig(
    level=getattr(logging, server_config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.StreamHandler(),  # 콘솔 출력
        logging.FileHandler(log_filename, encoding="utf-8"),  # 파일 저장
    ]
)
logger = logging.getLogger(__name__)
logger.info(f"로깅 초기화 완료: level={server_config.LOG_LEVEL}, env={server_config.ENV}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI 앱의 생명주기를 관리하는 컨텍스트 매니저.

    Note:
        - 시작: 오래된 로그 파일 정리
        - 종료: 남아있는 접속자 정보 로그 (상태는 메모리에만 존재)
    """
    logger.info("WebRTC 시그널링 서버 시작 중...")

    deleted_logs = cleanup_old_logs()
    if deleted_logs > 0:
        logger.info(f"오래된 로그 파일 {deleted_logs}개 정리 완료 ({server_config.LOG_RETENTION_DAYS}일 이상)")

    yield

    registry = app.state.registry
    logger.info(f"서버 종료 중... (접속자 {registry.user_count}명, 연결 {registry.connection_count}개)")


def create_app() -> FastAPI:
    """레지스트리와 릴레이를 새로 만들어 FastAPI 앱을 구성합니다."""
    registry = PresenceRegistry()
    relay = SignalingRelay(registry)

    app = FastAPI(title="WebRTC 1:1 Signaling Server", lifespan=lifespan)
    app.state.registry = registry
    app.state.relay = relay

    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=server_config.CORS_ORIGIN_REGEX,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 라우터 등록
    app.include_router(health_router)
    app.include_router(presence_router)
    app.include_router(signaling_router)

    # WebSocket 시그널링 라우터에 인스턴스 전달
    init_signaling_managers(registry, relay)

    @app.get("/")
    async def root():
        """서버 상태 확인 엔드포인트 (Health check)."""
        return {"status": "ok", "service": "WebRTC 1:1 Signaling Server"}

    return app


app = create_app()


def main() -> None:
    import uvicorn
    uvicorn.run(app, host=server_config.HOST, port=server_config.PORT, log_level="info")


if __name__ == "__main__":
    main()
