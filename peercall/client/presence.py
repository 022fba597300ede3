"""클라이언트 측 접속자 목록."""

import logging
from typing import Iterable, List

logger = logging.getLogger(__name__)


class PresenceView:
    """서버의 ``users-update``에서 내 이름을 뺀 접속자 목록.

    서버는 전체 목록을 그대로 보내므로 자기 자신을 걸러내는 것은
    표시하는 쪽의 책임입니다.
    """

    def __init__(self, own_name: str):
        self.own_name = own_name
        self.names: List[str] = []

    def update(self, names: Iterable[str]) -> List[str]:
        seen = set()
        visible = []
        for name in names:
            if name == self.own_name or name in seen:
                continue
            seen.add(name)
            visible.append(name)

        self.names = visible
        logger.debug(f"접속자 목록 갱신: {visible}")
        return visible

    def __contains__(self, name: str) -> bool:
        return name in self.names

    def __len__(self) -> int:
        return len(self.names)
