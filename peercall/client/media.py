"""미디어 엔진 계약.

CallStateMachine은 캡처, SDP 협상, ICE candidate 처리, 트랙 전송을
모두 이 인터페이스를 통해서만 요청합니다. 구현체는 세션 핸들과
description/candidate 값의 내부 구조를 자유롭게 정할 수 있으며,
상태 머신은 그 값을 해석하지 않습니다.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, List, Optional

TrackCallback = Callable[[Any], Optional[Awaitable[None]]]
CandidateCallback = Callable[[Any], Optional[Awaitable[None]]]
EndedCallback = Callable[[], Optional[Awaitable[None]]]


class MediaAcquisitionError(Exception):
    """카메라/마이크/화면 캡처 실패 (권한 거부, 장치 없음 등)."""


@dataclass
class LocalStream:
    """로컬에서 캡처한 트랙 묶음.

    Attributes:
        tracks (List[Any]): 캡처된 트랙 (각 트랙은 ``kind`` 속성을 가짐)
        source (Any): 트랙을 만든 원본 객체 (예: aiortc MediaPlayer)
    """
    tracks: List[Any] = field(default_factory=list)
    source: Any = None

    def get_tracks(self, kind: Optional[str] = None) -> List[Any]:
        if kind is None:
            return list(self.tracks)
        return [track for track in self.tracks if getattr(track, "kind", None) == kind]

    @property
    def video_track(self) -> Optional[Any]:
        video = self.get_tracks("video")
        return video[0] if video else None


class MediaEngine(ABC):
    """CallStateMachine이 사용하는 미디어 엔진 인터페이스."""

    @abstractmethod
    async def capture_local_media(self, kinds: Iterable[str]) -> LocalStream:
        """카메라/마이크를 캡처합니다. 실패 시 MediaAcquisitionError."""

    @abstractmethod
    async def capture_screen(self) -> LocalStream:
        """화면을 캡처합니다. 실패 시 MediaAcquisitionError."""

    @abstractmethod
    def create_session(self) -> Any:
        """새 피어 연결을 만들고 핸들을 반환합니다."""

    @abstractmethod
    def add_track(self, handle: Any, track: Any) -> None:
        ...

    @abstractmethod
    async def create_offer(self, handle: Any) -> Any:
        ...

    @abstractmethod
    async def create_answer(self, handle: Any, remote_offer: Any) -> Any:
        ...

    @abstractmethod
    async def set_local_description(self, handle: Any, description: Any) -> Any:
        """local description을 적용하고 실제 적용된 description을 반환합니다.

        엔진이 candidate 수집 결과를 description에 포함시키는 경우
        반환값이 인자와 다를 수 있습니다.
        """

    @abstractmethod
    async def set_remote_description(self, handle: Any, description: Any) -> None:
        ...

    @abstractmethod
    async def add_candidate(self, handle: Any, candidate: Any) -> None:
        ...

    @abstractmethod
    async def replace_outgoing_track(self, handle: Any, track: Any) -> None:
        """송신 중인 같은 종류의 트랙을 재협상 없이 교체합니다."""

    @abstractmethod
    def on_inbound_track(self, handle: Any, callback: TrackCallback) -> None:
        ...

    @abstractmethod
    def on_local_candidate(self, handle: Any, callback: CandidateCallback) -> None:
        ...

    @abstractmethod
    def on_track_ended(self, track: Any, callback: EndedCallback) -> None:
        """엔진/브라우저 쪽에서 트랙이 끝났을 때 호출될 콜백을 등록합니다."""

    @abstractmethod
    async def close(self, handle: Any) -> None:
        ...

    @abstractmethod
    def stop_track(self, track: Any) -> None:
        ...
