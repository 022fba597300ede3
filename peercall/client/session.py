"""통화 세션 데이터 모델."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional

from .media import LocalStream


class CallState(str, Enum):
    """통화 상태."""

    IDLE = "idle"
    OFFERING = "offering"
    RINGING = "ringing"
    ACTIVE = "active"
    SCREEN_SHARING = "screen_sharing"
    ENDED = "ended"


class CallRole(str, Enum):
    CALLER = "caller"
    CALLEE = "callee"


@dataclass
class CallSession:
    """진행 중인 1:1 통화 하나를 나타내는 데이터 클래스.

    세션은 하나의 CallStateMachine만 소유하며 종료되면 재사용하지 않고 버립니다.

    Attributes:
        local_name (str): 내 이름
        remote_name (str): 상대 이름 (생성 시 고정, 모든 송신 메시지의 대상)
        role (CallRole): 발신자/수신자
        state (CallState): 현재 상태
        local_stream (Optional[LocalStream]): 카메라/마이크 스트림
        screen_stream (Optional[LocalStream]): 화면 공유 스트림 (공유 중일 때만)
        handle (Any): 미디어 엔진의 피어 연결 핸들
        remote_offer (Any): 수신한 offer (수신자만)
        remote_answer (Any): 수신한 answer (발신자만, 중복 answer 무시용)
        pending_candidates (List[Any]): remote description 적용 전 도착한 candidate
        remote_description_set (bool): remote description 적용 완료 여부
        accepting (bool): accept() 진행 중 여부 (중복 수락 방지)
    """
    local_name: str
    remote_name: str
    role: CallRole
    state: CallState
    local_stream: Optional[LocalStream] = None
    screen_stream: Optional[LocalStream] = None
    handle: Any = None
    remote_offer: Any = None
    remote_answer: Any = None
    pending_candidates: List[Any] = field(default_factory=list)
    remote_description_set: bool = False
    accepting: bool = False

    @property
    def in_call(self) -> bool:
        return self.state in (CallState.ACTIVE, CallState.SCREEN_SHARING)
