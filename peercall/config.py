"""peercall 설정.

서버 실행, ICE(STUN/TURN) 서버, 클라이언트 연결 관련 상수와
환경변수 기반 설정을 제공합니다.
"""

import os
import logging
from pathlib import Path
from dataclasses import dataclass
from typing import List, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_env_path = Path(__file__).parent.parent / "config" / ".env"
load_dotenv(_env_path)


# ============================================================
# 서버 설정
# ============================================================

@dataclass(frozen=True)
class ServerConfig:
    """릴레이 서버 실행 설정."""

    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "3000"))

    # development / production
    ENV: str = os.getenv("ENV", "development")

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    LOG_DIR: str = os.getenv("LOG_DIR", "logs")

    # 로그 보관 기간 (일)
    LOG_RETENTION_DAYS: int = int(os.getenv("LOG_RETENTION_DAYS", "60"))

    # 개발 환경에서는 로컬 네트워크의 모든 포트 허용
    CORS_ORIGIN_REGEX: str = os.getenv(
        "CORS_ORIGIN_REGEX",
        r"^http://(localhost|127\.0\.0\.1|192\.168\.\d{1,3}\.\d{1,3}):\d+$",
    )


# ============================================================
# ICE Server 설정
# ============================================================

@dataclass(frozen=True)
class ICEServerConfig:
    """ICE 서버 설정."""

    # TURN 서버
    TURN_SERVER_URL: Optional[str] = os.getenv("TURN_SERVER_URL")
    TURN_USERNAME: Optional[str] = os.getenv("TURN_USERNAME")
    TURN_CREDENTIAL: Optional[str] = os.getenv("TURN_CREDENTIAL")

    # STUN 서버
    STUN_SERVER_URL: Optional[str] = os.getenv("STUN_SERVER_URL")

    # 기본 공개 STUN 서버 (fallback)
    DEFAULT_STUN_SERVERS: tuple = (
        "stun:stun.l.google.com:19302",
    )

    @property
    def has_turn_server(self) -> bool:
        """TURN 서버 설정 완료 여부."""
        return all([self.TURN_SERVER_URL, self.TURN_USERNAME, self.TURN_CREDENTIAL])

    def as_ice_servers(self) -> List[dict]:
        """브라우저 RTCPeerConnection 형식의 ICE 서버 목록을 반환합니다.

        Returns:
            List[dict]: ``{"urls": ...}`` 형식의 딕셔너리 리스트.
                TURN 서버가 설정된 경우에만 username/credential 항목 포함
        """
        ice_servers = []

        if self.STUN_SERVER_URL:
            ice_servers.append({"urls": self.STUN_SERVER_URL})

        for stun_url in self.DEFAULT_STUN_SERVERS:
            ice_servers.append({"urls": stun_url})

        if self.has_turn_server:
            ice_servers.append({
                "urls": self.TURN_SERVER_URL,
                "username": self.TURN_USERNAME,
                "credential": self.TURN_CREDENTIAL,
            })

        return ice_servers


# ============================================================
# 클라이언트 설정
# ============================================================

@dataclass(frozen=True)
class ClientConfig:
    """콘솔 클라이언트 및 aiortc 미디어 엔진 설정."""

    SIGNALING_URL: str = os.getenv("SIGNALING_URL", "ws://localhost:3000/ws")

    # 카메라/마이크 장치 (aiortc MediaPlayer 인자)
    CAMERA_DEVICE: str = os.getenv("CAMERA_DEVICE", "/dev/video0")
    CAMERA_FORMAT: str = os.getenv("CAMERA_FORMAT", "v4l2")
    MICROPHONE_DEVICE: str = os.getenv("MICROPHONE_DEVICE", "default")
    MICROPHONE_FORMAT: str = os.getenv("MICROPHONE_FORMAT", "pulse")
    VIDEO_SIZE: str = os.getenv("VIDEO_SIZE", "640x480")

    # 화면 공유 장치
    SCREEN_DEVICE: str = os.getenv("SCREEN_DEVICE", ":0.0")
    SCREEN_FORMAT: str = os.getenv("SCREEN_FORMAT", "x11grab")
    SCREEN_FRAMERATE: str = os.getenv("SCREEN_FRAMERATE", "15")


# ============================================================
# 싱글톤 인스턴스
# ============================================================

server_config = ServerConfig()
ice_config = ICEServerConfig()
client_config = ClientConfig()


logger.debug(f"[Config] .env 경로: {_env_path} (존재: {_env_path.exists()})")
logger.debug(f"[Config] TURN 서버 설정 완료: {ice_config.has_turn_server}")
