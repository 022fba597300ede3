"""접속자(Presence) 레지스트리 모듈.

이 모듈은 시그널링 서버에 접속한 사용자 이름과 Transport Channel의
매핑을 관리합니다. 릴레이 서버 프로세스가 유일한 소유자이며,
이름 목록이 바뀔 때마다 연결된 모든 채널에 ``users-update``를 전송합니다.

주요 기능:
    - 이름 등록/해제 (같은 이름 재등록 시 마지막 등록이 우선)
    - 채널 연결/종료 추적
    - 이름 → 채널 조회 (릴레이 라우팅용)
    - 변경 시 전체 이름 목록 브로드캐스트

Architecture:
    - users: Dict[str, Channel] - 이름 → 채널 (등록 순서 유지)
    - connections: Dict[str, Channel] - 채널 ID → 채널 (브로드캐스트 대상)

Examples:
    기본 사용법:
        >>> registry = PresenceRegistry()
        >>> registry.connect(channel)
        >>> await registry.register("alice", channel)
        >>> registry.resolve("alice") is channel
        True

See Also:
    relay.py: 핸드셰이크 메시지 라우팅
    routes/signaling.py: WebSocket 엔드포인트
"""
import logging
from typing import Dict, List, Optional

from ..shared import messages
from .channel import Channel

logger = logging.getLogger(__name__)


class PresenceRegistry:
    """이름 → 채널 매핑을 관리하는 단일 레지스트리.

    한 이름은 항상 최대 하나의 채널에만 매핑되며(함수 관계),
    한 채널도 최대 하나의 이름만 가집니다.

    Attributes:
        users (Dict[str, Channel]): 등록된 이름 → 채널 매핑
        connections (Dict[str, Channel]): 현재 연결된 모든 채널 (미등록 포함)

    Thread Safety:
        - asyncio 단일 스레드에서 동작
        - 매핑 변경은 await 없이 동기적으로 수행되므로 브로드캐스트 스냅샷은
          항상 변경 직후의 매핑과 일치

    Examples:
        >>> registry = PresenceRegistry()
        >>> await registry.register("alice", ch1)
        >>> await registry.register("alice", ch2)  # ch1은 조용히 밀려남
        >>> registry.resolve("alice") is ch2
        True
    """

    def __init__(self):
        # name -> channel
        self.users: Dict[str, Channel] = {}

        # channel_id -> channel (every open connection receives broadcasts)
        self.connections: Dict[str, Channel] = {}

    def connect(self, channel: Channel) -> None:
        """새로 열린 채널을 브로드캐스트 대상에 추가합니다.

        등록 전이라도 연결된 채널은 ``users-update``를 받습니다.
        이름 목록이 바뀌지 않으므로 브로드캐스트는 발생하지 않습니다.
        """
        self.connections[channel.channel_id] = channel
        logger.info(f"채널 {channel.channel_id[:8]} 연결됨 (연결 수: {len(self.connections)})")

    async def register(self, name: str, channel: Channel) -> None:
        """이름을 채널에 등록합니다.

        같은 이름이 다른 채널에 이미 등록돼 있으면 오류 없이 덮어씁니다.
        기존 채널에는 아무 알림도 보내지 않습니다. 채널이 이미 다른 이름으로
        등록돼 있었다면 그 이름은 같은 변경 안에서 해제됩니다.

        Args:
            name (str): 등록할 표시 이름 (비어있지 않아야 함)
            channel (Channel): 이름을 소유할 채널

        Note:
            - 변경 후 정확히 한 번 ``users-update`` 브로드캐스트
        """
        self.connections.setdefault(channel.channel_id, channel)

        previous_name = self.name_of(channel)
        if previous_name is not None and previous_name != name:
            del self.users[previous_name]
            logger.info(f"채널 {channel.channel_id[:8]}의 이전 이름 '{previous_name}' 해제")

        orphaned = self.users.get(name)
        if orphaned is not None and orphaned is not channel:
            logger.warning(
                f"이름 '{name}' 덮어씀: 채널 {orphaned.channel_id[:8]} → {channel.channel_id[:8]}"
            )

        self.users[name] = channel
        logger.info(f"사용자 '{name}' 등록 (채널 {channel.channel_id[:8]}). 접속자 {len(self.users)}명")

        await self.broadcast_users()

    async def unregister(self, channel: Channel) -> Optional[str]:
        """채널에 매핑된 이름을 제거합니다.

        Args:
            channel (Channel): 이름을 해제할 채널

        Returns:
            Optional[str]: 해제된 이름. 등록된 이름이 없으면 None

        Note:
            - 등록되지 않은 채널이면 아무 작업도, 브로드캐스트도 하지 않음
        """
        name = self.name_of(channel)
        if name is None:
            return None

        del self.users[name]
        logger.info(f"사용자 '{name}' 해제. 접속자 {len(self.users)}명")

        await self.broadcast_users()
        return name

    async def disconnect(self, channel: Channel) -> Optional[str]:
        """닫힌 채널을 정리합니다.

        브로드캐스트 대상에서 제거한 뒤 등록된 이름이 있으면 해제합니다.
        """
        self.connections.pop(channel.channel_id, None)
        return await self.unregister(channel)

    def resolve(self, name: str) -> Optional[Channel]:
        """이름으로 채널을 조회합니다. 없으면 None."""
        return self.users.get(name)

    def name_of(self, channel: Channel) -> Optional[str]:
        for name, registered in self.users.items():
            if registered is channel:
                return name
        return None

    def snapshot(self) -> List[str]:
        """현재 등록된 이름 목록 (등록 순서)."""
        return list(self.users.keys())

    async def broadcast_users(self) -> None:
        """연결된 모든 채널에 현재 이름 목록을 전송합니다.

        전송에 실패한 채널은 끊긴 것으로 보고 정리합니다.
        정리 자체도 레지스트리 변경이므로 별도의 브로드캐스트가 뒤따릅니다.
        """
        message = messages.users_update(self.snapshot())
        disconnected = []

        for channel in list(self.connections.values()):
            try:
                await channel.send(message)
            except Exception as e:
                logger.error(f"채널 {channel.channel_id[:8]}에 브로드캐스트 중 오류: {e}")
                disconnected.append(channel)

        # 연결 끊긴 채널 정리
        for channel in disconnected:
            await self.disconnect(channel)

    @property
    def user_count(self) -> int:
        return len(self.users)

    @property
    def connection_count(self) -> int:
        return len(self.connections)
