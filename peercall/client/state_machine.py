"""통화 세션 상태 머신 모듈.

이 모듈은 클라이언트 하나의 1:1 통화 수명주기를 관리합니다.
시그널링 메시지와 UI 동작을 받아 상태를 전이시키고, 미디어 엔진에
캡처/협상/종료를 요청하며, 핸드셰이크 메시지를 채널로 전송합니다.

상태 전이:
    IDLE → OFFERING        start_call()
    IDLE → RINGING         incoming-call 수신
    RINGING → ACTIVE       accept()
    RINGING → IDLE         reject() (아무것도 전송하지 않음)
    OFFERING → ACTIVE      call-accepted 수신
    ACTIVE ↔ SCREEN_SHARING toggle_screen_share()
    * → ENDED → IDLE       end_call() / call-ended 수신 / 채널 끊김 / 오류

Concurrency:
    - 모든 전이는 하나의 asyncio 루프에서 실행됨
    - 미디어 엔진/채널 호출(await)마다 다른 이벤트가 끼어들 수 있으므로
      await 이후에는 항상 같은 세션이 기대한 상태로 남아있는지 확인하고,
      아니라면 방금 획득한 자원을 즉시 해제하고 중단함
    - remote description 적용 전에 도착한 ICE candidate는 큐에 쌓았다가
      적용 직후 순서대로 반영함

Examples:
    >>> machine = CallStateMachine("alice", engine, client)
    >>> await machine.start_call("bob")
    >>> machine.state
    <CallState.OFFERING: 'offering'>
"""
import inspect
import logging
from functools import partial
from typing import Any, Callable, List, Optional

from ..shared import messages
from .media import LocalStream, MediaAcquisitionError, MediaEngine
from .presence import PresenceView
from .session import CallRole, CallSession, CallState

logger = logging.getLogger(__name__)


class CallStateError(Exception):
    """현재 상태에서 허용되지 않는 로컬 동작."""


class CallBusyError(CallStateError):
    """이미 세션이 있는데 새 통화를 시작하려는 경우."""


async def _call_hook(hook: Optional[Callable], *args) -> Any:
    if hook is None:
        return None
    result = hook(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class CallStateMachine:
    """클라이언트당 하나의 통화 세션을 관리하는 상태 머신.

    동시에 최대 하나의 CallSession만 존재합니다. 세션이 있는 동안의
    start_call()은 CallBusyError로 거부되고, 새 incoming-call은 무시됩니다.

    Attributes:
        local_name (str): 내 등록 이름
        engine (MediaEngine): 미디어 엔진
        channel: ``async emit(event, data)``를 제공하는 시그널링 채널
        session (Optional[CallSession]): 현재 세션 (없으면 IDLE)
        presence (PresenceView): 접속자 목록
        remote_tracks (List[Any]): 현재 통화에서 수신한 트랙

    Hooks:
        on_ringing(caller_name): 수신 통화 알림. True/False를 반환하면 즉시
            수락/거절하고, None이면 UI가 accept()/reject()를 호출할 때까지 대기
        on_state_change(old, new): 상태 변경 알림
        on_remote_track(track): 상대 트랙 수신 알림
    """

    def __init__(
        self,
        local_name: str,
        engine: MediaEngine,
        channel,
        on_ringing: Optional[Callable] = None,
        on_state_change: Optional[Callable] = None,
        on_remote_track: Optional[Callable] = None,
    ):
        self.local_name = local_name
        self.engine = engine
        self.channel = channel
        self.session: Optional[CallSession] = None
        self.presence = PresenceView(local_name)
        self.remote_tracks: List[Any] = []

        self.on_ringing = on_ringing
        self.on_state_change = on_state_change
        self.on_remote_track = on_remote_track

    @property
    def state(self) -> CallState:
        if self.session is None:
            return CallState.IDLE
        return self.session.state

    # ------------------------------------------------------------
    # Inbound signaling
    # ------------------------------------------------------------

    async def handle_message(self, event: Optional[str], data: Any = None) -> None:
        """채널에서 받은 서버 메시지를 해당 핸들러로 전달합니다."""
        data = data or {}

        if event == messages.EVENT_USERS_UPDATE:
            self.on_users_update(data.get("names", []))
        elif event == messages.EVENT_INCOMING_CALL:
            await self.on_incoming_call(data.get("offer"), data.get("callerUserId"))
        elif event == messages.EVENT_CALL_ACCEPTED:
            await self.on_call_accepted(data.get("answer"))
        elif event == messages.EVENT_ICE_CANDIDATE:
            await self.on_remote_candidate(data.get("candidate"))
        elif event == messages.EVENT_CALL_ENDED:
            await self.on_call_ended()
        elif event == messages.EVENT_ERROR:
            logger.error(f"서버 오류: {data.get('message')}")
        else:
            logger.warning(f"알 수 없는 메시지 타입: {event}")

    def on_users_update(self, names: List[str]) -> List[str]:
        return self.presence.update(names)

    async def on_incoming_call(self, offer: Any, caller_name: Optional[str]) -> None:
        """incoming-call 수신: IDLE → RINGING.

        통화 중이면 offer를 무시합니다. 프로토콜에 '통화 중' 응답이 없으므로
        발신자에게는 아무것도 보내지 않습니다.
        """
        if not caller_name or offer is None:
            logger.warning("발신자 또는 offer 없는 incoming-call 무시")
            return

        if self.session is not None:
            logger.info(f"'{caller_name}'의 수신 통화 무시: 이미 {self.session.state.value} 상태")
            return

        session = CallSession(
            local_name=self.local_name,
            remote_name=caller_name,
            role=CallRole.CALLEE,
            state=CallState.IDLE,
            remote_offer=offer,
        )
        self.session = session
        await self._set_state(session, CallState.RINGING)
        logger.info(f"'{caller_name}'로부터 수신 통화")

        decision = await _call_hook(self.on_ringing, caller_name)
        if decision is None or not self._is_current(session, CallState.RINGING):
            return
        if session.accepting:
            # UI가 훅을 기다리는 동안 이미 accept() 호출
            return
        if decision:
            await self.accept()
        else:
            await self.reject()

    async def on_call_accepted(self, answer: Any) -> None:
        """call-accepted 수신: OFFERING → ACTIVE.

        OFFERING 세션이 없거나 이미 answer를 받은 경우 무시합니다.
        """
        session = self.session
        if session is None or session.state != CallState.OFFERING:
            logger.info(f"OFFERING 세션 없음, answer 무시 (상태: {self.state.value})")
            return
        if session.remote_answer is not None or session.handle is None:
            logger.info("중복 또는 너무 이른 answer 무시")
            return

        session.remote_answer = answer
        try:
            await self.engine.set_remote_description(session.handle, answer)
            if not self._is_current(session, CallState.OFFERING):
                return
            await self._flush_candidates(session)
            if not self._is_current(session, CallState.OFFERING):
                return
            await self._set_state(session, CallState.ACTIVE)
            logger.info(f"'{session.remote_name}'와 통화 연결")
        except Exception as e:
            logger.error(f"answer 적용 실패: {e}")
            await self._teardown(session)

    async def on_remote_candidate(self, candidate: Any) -> None:
        """상대 ICE candidate 수신.

        remote description 적용 전이면 큐에 보관하고, 이후에는 즉시
        미디어 엔진에 전달합니다.
        """
        session = self.session
        if session is None or session.state == CallState.ENDED:
            logger.debug("세션 없음, ICE candidate 무시")
            return
        if candidate is None:
            return

        if not session.remote_description_set or session.handle is None:
            session.pending_candidates.append(candidate)
            logger.debug(f"ICE candidate 대기열 추가 ({len(session.pending_candidates)}개)")
            return

        await self._add_candidate(session, candidate)

    async def on_call_ended(self) -> None:
        """call-ended 수신: 상대가 통화를 종료함."""
        session = self.session
        if session is None:
            logger.debug("세션 없음, call-ended 무시")
            return
        logger.info(f"'{session.remote_name}'가 통화를 종료함")
        await self._teardown(session)

    async def on_disconnected(self) -> None:
        """시그널링 채널이 끊김: 진행 중인 세션을 정리합니다."""
        if self.session is not None:
            logger.warning("시그널링 연결 끊김, 세션 정리")
            await self._teardown(self.session)

    # ------------------------------------------------------------
    # Local actions
    # ------------------------------------------------------------

    async def start_call(self, remote_name: str) -> None:
        """상대에게 통화를 겁니다: IDLE → OFFERING.

        Args:
            remote_name (str): 상대 이름

        Raises:
            ValueError: 이름이 비었거나 자기 자신인 경우
            CallBusyError: 이미 세션이 있는 경우

        Note:
            - 상대가 오프라인이면 offer는 서버에서 버려지고 세션은 계속
              OFFERING으로 남음 (타임아웃 없음)
            - 미디어 캡처/협상 실패 시 세션을 정리하고 IDLE로 돌아감
        """
        if not remote_name:
            raise ValueError("remote_name is required")
        if remote_name == self.local_name:
            raise ValueError("cannot call yourself")
        if self.session is not None:
            raise CallBusyError(f"already in a call ({self.session.state.value})")

        session = CallSession(
            local_name=self.local_name,
            remote_name=remote_name,
            role=CallRole.CALLER,
            state=CallState.IDLE,
        )
        self.session = session
        await self._set_state(session, CallState.OFFERING)
        logger.info(f"'{remote_name}'에게 통화 시작")

        try:
            if not await self._acquire_local_media(session, CallState.OFFERING):
                return
            handle = self._open_session(session)

            offer = await self.engine.create_offer(handle)
            if not self._is_current(session, CallState.OFFERING):
                return
            offer = await self.engine.set_local_description(handle, offer)
            if not self._is_current(session, CallState.OFFERING):
                return

            await self.channel.emit(messages.EVENT_CALL_USER, {
                "targetName": remote_name,
                "offer": offer,
                "callerName": self.local_name,
            })
        except Exception as e:
            logger.error(f"통화 시작 실패: {e}")
            await self._teardown(session)

    async def accept(self) -> None:
        """수신 통화를 수락합니다: RINGING → ACTIVE.

        Raises:
            CallStateError: RINGING 상태가 아니거나 이미 수락 중인 경우
        """
        session = self.session
        if session is None or session.state != CallState.RINGING:
            raise CallStateError(f"no incoming call to accept ({self.state.value})")
        if session.accepting:
            raise CallStateError("incoming call is already being accepted")
        # 첫 await 전에 표시: 이후의 accept()는 거부됨
        session.accepting = True

        try:
            if not await self._acquire_local_media(session, CallState.RINGING):
                return
            handle = self._open_session(session)

            await self.engine.set_remote_description(handle, session.remote_offer)
            if not self._is_accepting(session):
                return
            await self._flush_candidates(session)
            if not self._is_accepting(session):
                return

            answer = await self.engine.create_answer(handle, session.remote_offer)
            if not self._is_accepting(session):
                return
            answer = await self.engine.set_local_description(handle, answer)
            if not self._is_accepting(session):
                return

            await self.channel.emit(messages.EVENT_CALL_ACCEPTED, {
                "targetName": session.remote_name,
                "answer": answer,
            })
            if not self._is_accepting(session):
                return
            session.accepting = False
            await self._set_state(session, CallState.ACTIVE)
            logger.info(f"'{session.remote_name}'의 통화 수락")
        except Exception as e:
            logger.error(f"통화 수락 실패: {e}")
            await self._teardown(session)

    async def reject(self) -> None:
        """수신 통화를 거절합니다: RINGING → IDLE.

        거절 메시지는 프로토콜에 없으므로 발신자에게 아무것도 보내지 않습니다.
        """
        session = self.session
        if session is None or session.state != CallState.RINGING:
            raise CallStateError(f"no incoming call to reject ({self.state.value})")

        logger.info(f"'{session.remote_name}'의 통화 거절")
        await self._teardown(session)

    async def end_call(self) -> None:
        """통화를 종료하고 상대에게 end-call을 보냅니다.

        RINGING 상태에서는 reject()와 같습니다. 세션이 없으면 아무 작업도
        하지 않습니다.
        """
        session = self.session
        if session is None or session.state == CallState.ENDED:
            return
        if session.state == CallState.RINGING:
            await self.reject()
            return

        await self._teardown(session, notify_remote=True)

    async def toggle_screen_share(self) -> None:
        """화면 공유를 켜거나 끕니다: ACTIVE ↔ SCREEN_SHARING.

        SDP 재협상 없이 송신 비디오 트랙만 교체합니다. 화면 캡처에 실패하면
        로그만 남기고 ACTIVE 상태로 통화를 유지합니다.

        Raises:
            CallStateError: 통화 중이 아닌 경우
        """
        session = self.session
        if session is None or not session.in_call:
            raise CallStateError(f"not in a call ({self.state.value})")

        if session.state == CallState.SCREEN_SHARING:
            await self._stop_screen_share(session)
            return

        try:
            screen = await self.engine.capture_screen()
        except MediaAcquisitionError as e:
            logger.error(f"화면 공유 시작 실패: {e}")
            return

        if not self._is_current(session, CallState.ACTIVE) or session.screen_stream is not None:
            self._release_stream(screen)
            return

        session.screen_stream = screen
        track = screen.video_track
        # 종료 콜백은 트랙 교체 전에 등록
        self.engine.on_track_ended(track, partial(self._on_screen_track_ended, session, screen))
        try:
            await self.engine.replace_outgoing_track(session.handle, track)
        except Exception as e:
            logger.error(f"화면 트랙 교체 실패: {e}")
            if session.screen_stream is screen:
                session.screen_stream = None
                self._release_stream(screen)
            return

        if not self._is_current(session, CallState.ACTIVE):
            return
        if session.screen_stream is not screen:
            # 교체 도중 화면 공유가 중지됨: 방금 보낸 화면 트랙 대신 카메라 복원
            logger.info("화면 트랙 교체 중 화면 공유가 중지됨")
            await self._restore_camera(session)
            return

        await self._set_state(session, CallState.SCREEN_SHARING)
        logger.info("화면 공유 시작")

    # ------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------

    def _is_current(self, session: CallSession, *states: CallState) -> bool:
        return self.session is session and session.state in states

    def _is_accepting(self, session: CallSession) -> bool:
        return session.accepting and self._is_current(session, CallState.RINGING)

    async def _set_state(self, session: CallSession, new_state: CallState) -> None:
        old_state = session.state
        if old_state == new_state:
            return
        session.state = new_state
        logger.debug(f"상태 변경: {old_state.value} → {new_state.value}")
        await _call_hook(self.on_state_change, old_state, new_state)

    async def _acquire_local_media(self, session: CallSession, expected: CallState) -> bool:
        """카메라/마이크를 캡처해 세션에 붙입니다.

        캡처 실패 시 세션을 정리하고 False를 반환합니다. 캡처를 기다리는
        동안 세션이 끝났다면 방금 얻은 트랙을 바로 해제합니다.
        """
        try:
            stream = await self.engine.capture_local_media(("audio", "video"))
        except MediaAcquisitionError as e:
            logger.error(f"로컬 미디어 캡처 실패: {e}")
            await self._teardown(session)
            return False

        if not self._is_current(session, expected):
            logger.info("캡처 완료 전에 세션 종료됨, 트랙 해제")
            self._release_stream(stream)
            return False

        session.local_stream = stream
        return True

    def _open_session(self, session: CallSession) -> Any:
        handle = self.engine.create_session()
        session.handle = handle

        self.engine.on_inbound_track(handle, self._handle_remote_track)
        self.engine.on_local_candidate(handle, partial(self._send_local_candidate, session))

        for track in session.local_stream.get_tracks():
            self.engine.add_track(handle, track)
        return handle

    async def _handle_remote_track(self, track: Any) -> None:
        logger.info(f"상대 {getattr(track, 'kind', 'unknown')} 트랙 수신")
        self.remote_tracks.append(track)
        await _call_hook(self.on_remote_track, track)

    async def _send_local_candidate(self, session: CallSession, candidate: Any) -> None:
        if self.session is not session or session.state == CallState.ENDED:
            return
        try:
            await self.channel.emit(messages.EVENT_ICE_CANDIDATE, {
                "targetName": session.remote_name,
                "candidate": candidate,
            })
        except Exception as e:
            logger.error(f"ICE candidate 전송 실패: {e}")

    async def _flush_candidates(self, session: CallSession) -> None:
        session.remote_description_set = True
        pending, session.pending_candidates = session.pending_candidates, []
        if pending:
            logger.info(f"대기 중이던 ICE candidate {len(pending)}개 적용")
        for candidate in pending:
            if self.session is not session:
                return
            await self._add_candidate(session, candidate)

    async def _add_candidate(self, session: CallSession, candidate: Any) -> None:
        try:
            await self.engine.add_candidate(session.handle, candidate)
        except Exception as e:
            logger.warning(f"ICE candidate 추가 실패: {e}")

    async def _on_screen_track_ended(self, session: CallSession, screen: LocalStream) -> None:
        if self.session is not session or session.screen_stream is not screen:
            return
        logger.info("화면 공유가 외부에서 중지됨")
        await self._stop_screen_share(session)

    async def _stop_screen_share(self, session: CallSession) -> None:
        screen = session.screen_stream
        if screen is None:
            return
        session.screen_stream = None

        await self._restore_camera(session)
        self._release_stream(screen)

        if self._is_current(session, CallState.SCREEN_SHARING):
            await self._set_state(session, CallState.ACTIVE)
            logger.info("화면 공유 중지")

    async def _restore_camera(self, session: CallSession) -> None:
        camera = session.local_stream.video_track if session.local_stream else None
        if camera is None or session.handle is None:
            return
        try:
            await self.engine.replace_outgoing_track(session.handle, camera)
        except Exception as e:
            logger.error(f"카메라 트랙 복원 실패: {e}")

    def _release_stream(self, stream: Optional[LocalStream]) -> None:
        if stream is None:
            return
        for track in stream.get_tracks():
            try:
                self.engine.stop_track(track)
            except Exception as e:
                logger.warning(f"트랙 정지 실패: {e}")

    async def _teardown(self, session: CallSession, notify_remote: bool = False) -> None:
        """세션을 ENDED로 만들고 모든 자원을 해제한 뒤 IDLE로 돌아갑니다.

        Cleanup Steps:
            1. 상태를 ENDED로 변경하고 세션 분리 (첫 await 전에 수행)
            2. 화면 공유 트랙, 카메라/마이크 트랙 정지
            3. 피어 연결 종료
            4. notify_remote이면 상대에게 end-call 전송
            5. ENDED → IDLE 알림

        Note:
            - 여러 번 호출해도 안전함
            - 어떤 단계가 실패해도 나머지 정리는 계속 진행됨
            - 세션이 먼저 분리되므로 정리 중에 도착한 incoming-call은
              새 세션으로 처리됨
        """
        if session.state == CallState.ENDED:
            return
        previous_state = session.state
        session.state = CallState.ENDED
        detached = self.session is session
        if detached:
            self.session = None
            self.remote_tracks = []
        logger.debug(f"상태 변경: {previous_state.value} → {CallState.ENDED.value}")
        await _call_hook(self.on_state_change, previous_state, CallState.ENDED)

        screen, session.screen_stream = session.screen_stream, None
        self._release_stream(screen)
        local, session.local_stream = session.local_stream, None
        self._release_stream(local)
        session.pending_candidates.clear()

        handle, session.handle = session.handle, None
        if handle is not None:
            try:
                await self.engine.close(handle)
            except Exception as e:
                logger.warning(f"피어 연결 종료 중 오류: {e}")

        if notify_remote and previous_state != CallState.RINGING:
            try:
                await self.channel.emit(messages.EVENT_END_CALL, {"targetName": session.remote_name})
            except Exception as e:
                logger.error(f"end-call 전송 실패: {e}")

        if detached:
            logger.info(f"'{session.remote_name}'와의 세션 종료")
            await _call_hook(self.on_state_change, CallState.ENDED, CallState.IDLE)
