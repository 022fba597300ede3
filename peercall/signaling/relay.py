"""시그널링 릴레이 모듈.

핸드셰이크 메시지(offer/answer/ICE candidate/통화 종료)를 대상 이름으로
라우팅합니다. 릴레이는 통화 상태를 전혀 기억하지 않으며, 대상이
오프라인이면 보낸 쪽에 오류 없이 메시지를 버립니다.

라우팅 규칙:
    - call-user      → 대상에게 incoming-call {offer, callerUserId}
    - call-accepted  → 대상에게 call-accepted {answer}
    - ice-candidate  → 대상에게 ice-candidate {candidate}
    - end-call       → 대상에게 call-ended
"""
import logging
from typing import Any, Optional

from pydantic import ValidationError

from ..shared import messages
from ..shared.messages import (
    CallAcceptedPayload,
    CallUserPayload,
    EndCallPayload,
    IceCandidatePayload,
)
from .channel import Channel
from .registry import PresenceRegistry

logger = logging.getLogger(__name__)


class SignalingRelay:
    """이벤트 이름별로 메시지를 검증하고 대상 채널로 전달하는 라우터.

    Attributes:
        registry (PresenceRegistry): 대상 이름 조회에 사용하는 레지스트리
        routed_count (int): 전달에 성공한 핸드셰이크 메시지 수
        dropped_count (int): 대상이 없어 버려진 메시지 수
    """

    def __init__(self, registry: PresenceRegistry):
        self.registry = registry
        self.routed_count = 0
        self.dropped_count = 0

        self._handlers = {
            messages.EVENT_REGISTER: self._handle_register,
            messages.EVENT_CALL_USER: self._handle_call_user,
            messages.EVENT_CALL_ACCEPTED: self._handle_call_accepted,
            messages.EVENT_ICE_CANDIDATE: self._handle_ice_candidate,
            messages.EVENT_END_CALL: self._handle_end_call,
        }

    async def handle(self, channel: Channel, event: Optional[str], data: Any) -> bool:
        """수신한 메시지 하나를 처리합니다.

        Args:
            channel (Channel): 메시지를 보낸 채널
            event (Optional[str]): 이벤트 이름 (``type`` 필드)
            data (Any): 페이로드 (``data`` 필드)

        Returns:
            bool: 메시지가 처리(등록 또는 전달)되었으면 True,
                  알 수 없는 이벤트/검증 실패/대상 오프라인이면 False
        """
        handler = self._handlers.get(event)
        if handler is None:
            logger.warning(f"알 수 없는 메시지 타입: {event}")
            return False

        try:
            return await handler(channel, data if data is not None else {})
        except ValidationError as e:
            logger.warning(f"채널 {channel.channel_id[:8]}의 '{event}' 메시지 검증 실패: {e.errors()}")
            if event == messages.EVENT_REGISTER:
                await channel.send(messages.error("Name is required"))
            return False

    async def _handle_register(self, channel: Channel, data: Any) -> bool:
        payload = messages.parse_register(data)
        await self.registry.register(payload.name, channel)
        return True

    async def _handle_call_user(self, channel: Channel, data: Any) -> bool:
        payload = CallUserPayload.model_validate(data)
        # Tag with the sender's registered name when it has one
        caller_name = self.registry.name_of(channel) or payload.caller_name
        return await self._forward(
            payload.target_name,
            messages.incoming_call(payload.offer, caller_name),
            messages.EVENT_CALL_USER,
        )

    async def _handle_call_accepted(self, channel: Channel, data: Any) -> bool:
        payload = CallAcceptedPayload.model_validate(data)
        return await self._forward(
            payload.target_name,
            messages.call_accepted(payload.answer),
            messages.EVENT_CALL_ACCEPTED,
        )

    async def _handle_ice_candidate(self, channel: Channel, data: Any) -> bool:
        payload = IceCandidatePayload.model_validate(data)
        return await self._forward(
            payload.target_name,
            messages.ice_candidate(payload.candidate),
            messages.EVENT_ICE_CANDIDATE,
        )

    async def _handle_end_call(self, channel: Channel, data: Any) -> bool:
        payload = EndCallPayload.model_validate(data)
        return await self._forward(
            payload.target_name,
            messages.call_ended(),
            messages.EVENT_END_CALL,
        )

    async def _forward(self, target_name: str, message: dict, event: str) -> bool:
        """대상 이름의 채널로 메시지를 전달합니다.

        대상이 레지스트리에 없으면 메시지를 버립니다. 보낸 쪽에는
        아무것도 알리지 않습니다.
        """
        target = self.registry.resolve(target_name)
        if target is None:
            self.dropped_count += 1
            logger.debug(f"'{event}' 대상 '{target_name}' 오프라인, 메시지 버림")
            return False

        try:
            await target.send(message)
        except Exception as e:
            # The target's own endpoint loop cleans the registry up on disconnect
            logger.error(f"'{target_name}'에게 '{event}' 전달 중 오류: {e}")
            return False

        self.routed_count += 1
        logger.info(f"'{event}' → '{target_name}' 전달")
        return True
