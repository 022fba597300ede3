"""시그널링 메시지 계약.

클라이언트와 릴레이 서버가 WebSocket으로 주고받는 이벤트 이름과
페이로드 모델을 정의합니다. 모든 프레임은 다음 형식의 JSON 텍스트입니다::

    {"type": "<event>", "data": <payload>}

offer/answer/candidate 필드는 미디어 엔진이 만든 불투명(opaque) 값으로,
릴레이는 내용을 해석하지 않고 그대로 전달합니다.
"""

from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

# client -> server
EVENT_REGISTER = "register"
EVENT_CALL_USER = "call-user"
EVENT_CALL_ACCEPTED = "call-accepted"
EVENT_ICE_CANDIDATE = "ice-candidate"
EVENT_END_CALL = "end-call"

# server -> client
EVENT_USERS_UPDATE = "users-update"
EVENT_INCOMING_CALL = "incoming-call"
EVENT_CALL_ENDED = "call-ended"
EVENT_ERROR = "error"

# 원본 클라이언트는 targetUserId 필드를 사용
_TARGET_ALIASES = AliasChoices("targetName", "targetUserId")


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class _Targeted(_Payload):
    target_name: str = Field(validation_alias=_TARGET_ALIASES)

    @field_validator("target_name")
    @classmethod
    def _non_empty_target(cls, value: str) -> str:
        if not value:
            raise ValueError("targetName must not be empty")
        return value


class RegisterPayload(_Payload):
    """``register`` 페이로드."""

    name: str

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be empty")
        return value


class CallUserPayload(_Targeted):
    """``call-user`` 페이로드 (Offer)."""

    offer: Any
    caller_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("callerName", "callerUserId")
    )


class CallAcceptedPayload(_Targeted):
    """``call-accepted`` 페이로드 (Answer)."""

    answer: Any


class IceCandidatePayload(_Targeted):
    """``ice-candidate`` 페이로드 (Candidate)."""

    candidate: Any


class EndCallPayload(_Targeted):
    """``end-call`` 페이로드 (EndCall)."""


def parse_register(data: Any) -> RegisterPayload:
    """``register`` 데이터를 검증합니다.

    원본 클라이언트는 이름 문자열만 보내므로 ``"alice"``와
    ``{"name": "alice"}`` 두 형식을 모두 받습니다.

    Raises:
        pydantic.ValidationError: 이름이 없거나 비어있는 경우
    """
    if isinstance(data, str):
        data = {"name": data}
    return RegisterPayload.model_validate(data)


def envelope(event: str, data: Any = None) -> dict:
    """전송용 메시지 프레임을 만듭니다."""
    message = {"type": event}
    if data is not None:
        message["data"] = data
    return message


def users_update(names: list) -> dict:
    return envelope(EVENT_USERS_UPDATE, {"names": list(names)})


def incoming_call(offer: Any, caller_name: Optional[str]) -> dict:
    return envelope(EVENT_INCOMING_CALL, {"offer": offer, "callerUserId": caller_name})


def call_accepted(answer: Any) -> dict:
    return envelope(EVENT_CALL_ACCEPTED, {"answer": answer})


def ice_candidate(candidate: Any) -> dict:
    return envelope(EVENT_ICE_CANDIDATE, {"candidate": candidate})


def call_ended() -> dict:
    return envelope(EVENT_CALL_ENDED)


def error(message: str) -> dict:
    return envelope(EVENT_ERROR, {"message": message})
