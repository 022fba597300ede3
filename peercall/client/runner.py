"""콘솔 통화 클라이언트.

사용법:
    # 이름만 등록하고 수신 대기 (수신 통화 자동 수락)
    peercall-client --name bob --auto-accept

    # alice로 등록한 뒤 bob에게 통화
    peercall-client --name alice --call bob

    # 10초 후 화면 공유 전환, 30초 후 종료
    peercall-client --name alice --call bob --share-after 10 --hangup-after 30
"""

import argparse
import asyncio
import logging
from typing import Optional

from ..config import client_config
from .aiortc_engine import AiortcMediaEngine
from .channel import SignalingClient
from .session import CallState
from .state_machine import CallStateMachine

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="peercall console client")
    parser.add_argument("--url", default=client_config.SIGNALING_URL, help="signaling server WebSocket URL")
    parser.add_argument("--name", required=True, help="name to register as")
    parser.add_argument("--call", default=None, help="name of the user to call once online")
    parser.add_argument("--auto-accept", action="store_true", help="accept incoming calls automatically")
    parser.add_argument("--share-after", type=float, default=None, help="toggle screen share N seconds after connecting")
    parser.add_argument("--hangup-after", type=float, default=None, help="end the call N seconds after connecting")
    parser.add_argument("--log-level", default="INFO")
    return parser


async def wait_for_user(machine: CallStateMachine, name: str, interval: float = 0.5) -> None:
    while name not in machine.presence:
        await asyncio.sleep(interval)


async def run_client(
    url: str,
    name: str,
    call: Optional[str] = None,
    auto_accept: bool = False,
    share_after: Optional[float] = None,
    hangup_after: Optional[float] = None,
) -> None:
    client = SignalingClient(url)
    connected = asyncio.Event()

    async def on_state_change(old: CallState, new: CallState) -> None:
        print(f"[{name}] {old.value} -> {new.value}")
        if new == CallState.ACTIVE and old in (CallState.OFFERING, CallState.RINGING):
            connected.set()

    def on_ringing(caller_name: str) -> bool:
        print(f"[{name}] incoming call from {caller_name} ({'accepting' if auto_accept else 'rejecting'})")
        return auto_accept

    machine = CallStateMachine(
        name,
        AiortcMediaEngine(),
        client,
        on_ringing=on_ringing,
        on_state_change=on_state_change,
    )
    client.add_handler(machine.handle_message)
    client.add_close_handler(machine.on_disconnected)

    await client.connect()
    await client.register(name)
    receiver = asyncio.create_task(client.run())

    try:
        if call:
            await wait_for_user(machine, call)
            await machine.start_call(call)

        if share_after is not None or hangup_after is not None:
            await connected.wait()
            if share_after is not None:
                await asyncio.sleep(share_after)
                await machine.toggle_screen_share()
            if hangup_after is not None:
                await asyncio.sleep(hangup_after)
                await machine.end_call()

        await receiver
    finally:
        await machine.end_call()
        await client.close()
        if not receiver.done():
            receiver.cancel()


def main() -> None:
    args = build_parser().parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    try:
        asyncio.run(run_client(
            args.url,
            args.name,
            call=args.call,
            auto_accept=args.auto_accept,
            share_after=args.share_after,
            hangup_after=args.hangup_after,
        ))
    except KeyboardInterrupt:
        logger.info("클라이언트 종료")


if __name__ == "__main__":
    main()
