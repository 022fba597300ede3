"""통화 클라이언트 모듈.

Classes:
    CallStateMachine: 1:1 통화 수명주기 상태 머신
    CallSession: 통화 세션 데이터 클래스
    MediaEngine: 미디어 엔진 계약
    AiortcMediaEngine: aiortc 기반 미디어 엔진
    SignalingClient: websockets 기반 시그널링 채널
    PresenceView: 접속자 목록
"""

from .media import LocalStream, MediaAcquisitionError, MediaEngine
from .session import CallRole, CallSession, CallState
from .presence import PresenceView
from .state_machine import CallBusyError, CallStateError, CallStateMachine
from .channel import SignalingClient
from .aiortc_engine import AiortcMediaEngine

__all__ = [
    "LocalStream",
    "MediaAcquisitionError",
    "MediaEngine",
    "CallRole",
    "CallSession",
    "CallState",
    "PresenceView",
    "CallBusyError",
    "CallStateError",
    "CallStateMachine",
    "SignalingClient",
    "AiortcMediaEngine",
]
