"""aiortc 기반 미디어 엔진.

MediaEngine 계약을 aiortc의 RTCPeerConnection과 MediaPlayer로 구현합니다.
description과 candidate는 브라우저와 같은 JSON 형식으로 주고받습니다::

    description: {"sdp": "...", "type": "offer" | "answer"}
    candidate:   {"candidate": "candidate:...", "sdpMid": "0", "sdpMLineIndex": 0}

See Also:
    aiortc Documentation: https://aiortc.readthedocs.io/
"""
import asyncio
import logging
from typing import Any, Iterable, Optional

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.contrib.media import MediaPlayer
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from ..config import ClientConfig, ICEServerConfig, client_config, ice_config
from .media import (
    CandidateCallback,
    EndedCallback,
    LocalStream,
    MediaAcquisitionError,
    MediaEngine,
    TrackCallback,
)

logger = logging.getLogger(__name__)


def description_to_dict(description: RTCSessionDescription) -> dict:
    return {"sdp": description.sdp, "type": description.type}


def description_from_dict(data: dict) -> RTCSessionDescription:
    return RTCSessionDescription(sdp=data["sdp"], type=data["type"])


def candidate_to_dict(candidate) -> dict:
    return {
        "candidate": "candidate:" + candidate_to_sdp(candidate),
        "sdpMid": candidate.sdpMid,
        "sdpMLineIndex": candidate.sdpMLineIndex,
    }


def candidate_from_dict(data: dict):
    """브라우저 형식의 candidate 딕셔너리를 aiortc RTCIceCandidate로 변환합니다.

    Returns:
        RTCIceCandidate 또는 end-of-candidates 표시(빈 문자열)이면 None
    """
    candidate_str = data.get("candidate", "")
    if not candidate_str:
        return None
    if candidate_str.startswith("candidate:"):
        candidate_str = candidate_str[10:]

    ice_candidate = candidate_from_sdp(candidate_str)
    ice_candidate.sdpMid = data.get("sdpMid")
    ice_candidate.sdpMLineIndex = data.get("sdpMLineIndex")
    return ice_candidate


class AiortcMediaEngine(MediaEngine):
    """aiortc로 캡처/협상/전송을 수행하는 미디어 엔진.

    Attributes:
        settings (ClientConfig): 카메라/마이크/화면 장치 설정
        ice (ICEServerConfig): STUN/TURN 서버 설정
    """

    def __init__(self, settings: ClientConfig = client_config, ice: ICEServerConfig = ice_config):
        self.settings = settings
        self.ice = ice

    async def capture_local_media(self, kinds: Iterable[str]) -> LocalStream:
        kinds = set(kinds)
        tracks = []
        players = []

        try:
            if "video" in kinds:
                camera = await asyncio.to_thread(
                    MediaPlayer,
                    self.settings.CAMERA_DEVICE,
                    format=self.settings.CAMERA_FORMAT,
                    options={"video_size": self.settings.VIDEO_SIZE},
                )
                players.append(camera)
                if camera.video:
                    tracks.append(camera.video)

            if "audio" in kinds:
                microphone = await asyncio.to_thread(
                    MediaPlayer,
                    self.settings.MICROPHONE_DEVICE,
                    format=self.settings.MICROPHONE_FORMAT,
                )
                players.append(microphone)
                if microphone.audio:
                    tracks.append(microphone.audio)
        except Exception as e:
            for track in tracks:
                track.stop()
            raise MediaAcquisitionError(f"카메라/마이크 캡처 실패: {e}") from e

        if not tracks:
            raise MediaAcquisitionError(f"캡처된 트랙 없음: kinds={sorted(kinds)}")

        logger.info(f"[Media] 로컬 미디어 캡처: {[t.kind for t in tracks]}")
        return LocalStream(tracks=tracks, source=players)

    async def capture_screen(self) -> LocalStream:
        try:
            screen = await asyncio.to_thread(
                MediaPlayer,
                self.settings.SCREEN_DEVICE,
                format=self.settings.SCREEN_FORMAT,
                options={"framerate": self.settings.SCREEN_FRAMERATE},
            )
        except Exception as e:
            raise MediaAcquisitionError(f"화면 캡처 실패: {e}") from e

        if screen.video is None:
            raise MediaAcquisitionError("화면 캡처에 비디오 트랙 없음")

        logger.info(f"[Media] 화면 캡처 시작: {self.settings.SCREEN_DEVICE}")
        return LocalStream(tracks=[screen.video], source=screen)

    def create_session(self) -> RTCPeerConnection:
        ice_servers = []
        if self.ice.STUN_SERVER_URL:
            ice_servers.append(RTCIceServer(urls=[self.ice.STUN_SERVER_URL]))
        for stun_url in self.ice.DEFAULT_STUN_SERVERS:
            ice_servers.append(RTCIceServer(urls=[stun_url]))
        if self.ice.has_turn_server:
            ice_servers.append(RTCIceServer(
                urls=[self.ice.TURN_SERVER_URL],
                username=self.ice.TURN_USERNAME,
                credential=self.ice.TURN_CREDENTIAL,
            ))

        pc = RTCPeerConnection(configuration=RTCConfiguration(iceServers=ice_servers))

        @pc.on("connectionstatechange")
        async def on_connection_state_change():
            logger.info(f"[Media] 연결 상태: {pc.connectionState}")

        return pc

    def add_track(self, handle: RTCPeerConnection, track: MediaStreamTrack) -> None:
        handle.addTrack(track)

    async def create_offer(self, handle: RTCPeerConnection) -> dict:
        return description_to_dict(await handle.createOffer())

    async def create_answer(self, handle: RTCPeerConnection, remote_offer: dict) -> dict:
        if handle.remoteDescription is None:
            await handle.setRemoteDescription(description_from_dict(remote_offer))
        return description_to_dict(await handle.createAnswer())

    async def set_local_description(self, handle: RTCPeerConnection, description: dict) -> dict:
        await handle.setLocalDescription(description_from_dict(description))
        # aiortc gathers candidates during setLocalDescription and embeds them in the SDP
        return description_to_dict(handle.localDescription)

    async def set_remote_description(self, handle: RTCPeerConnection, description: dict) -> None:
        await handle.setRemoteDescription(description_from_dict(description))

    async def add_candidate(self, handle: RTCPeerConnection, candidate: dict) -> None:
        ice_candidate = candidate_from_dict(candidate)
        if ice_candidate is None:
            logger.debug("[Media] end-of-candidates 수신")
            return
        await handle.addIceCandidate(ice_candidate)

    async def replace_outgoing_track(self, handle: RTCPeerConnection, track: MediaStreamTrack) -> None:
        for sender in handle.getSenders():
            if sender.kind == track.kind:
                sender.replaceTrack(track)
                logger.info(f"[Media] 송신 {track.kind} 트랙 교체")
                return
        logger.warning(f"[Media] 교체할 {track.kind} 센더 없음")

    def on_inbound_track(self, handle: RTCPeerConnection, callback: TrackCallback) -> None:
        handle.on("track", callback)

    def on_local_candidate(self, handle: RTCPeerConnection, callback: CandidateCallback) -> None:
        @handle.on("icecandidate")
        async def on_ice_candidate(candidate):
            if candidate:
                result = callback(candidate_to_dict(candidate))
                if result is not None:
                    await result

    def on_track_ended(self, track: MediaStreamTrack, callback: EndedCallback) -> None:
        track.on("ended", callback)

    async def close(self, handle: Optional[RTCPeerConnection]) -> None:
        if handle is not None:
            await handle.close()

    def stop_track(self, track: MediaStreamTrack) -> None:
        track.stop()
