"""Video consultation room provisioning."""

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Protocol
from uuid import UUID, uuid4

import structlog
from jose import jwt

from telemed.config import Settings
from telemed.core.clock import utc_now
from telemed.schemas.video_calls import CallRole, VideoCallData, VideoCallSession

logger = structlog.get_logger(__name__)


class VideoCallProvider(Protocol):
    """What the appointment lifecycle needs from a call provider."""

    async def create_call(self, appointment_id: UUID) -> VideoCallData: ...

    async def end_call(self, call_id: str) -> VideoCallSession: ...

    async def generate_token(self, call_id: str, user_id: UUID, role: CallRole) -> str: ...


class VideoCallService:
    """Provisions consultation rooms on the configured provider.

    ``mock`` links to the frontend's own call page. ``jitsi`` opens a room on
    a Jitsi Meet domain and, when an app secret is configured, signs join
    tokens as HS256 JWTs.
    """

    def __init__(
        self,
        provider: str = "mock",
        frontend_url: str = "http://localhost:3000",
        jitsi_domain: str = "meet.jit.si",
        app_id: str | None = None,
        app_secret: str | None = None,
        ttl_hours: int = 24,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize with provider settings."""
        self.provider = provider
        self.frontend_url = frontend_url.rstrip("/")
        self.jitsi_domain = jitsi_domain
        self.app_id = app_id
        self.app_secret = app_secret
        self.ttl = timedelta(hours=ttl_hours)
        self.clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "VideoCallService":
        """Build the service from application settings."""
        return cls(
            provider=settings.video_call_provider,
            frontend_url=settings.frontend_url,
            jitsi_domain=settings.jitsi_domain,
            app_id=settings.video_app_id,
            app_secret=settings.video_app_secret,
            ttl_hours=settings.video_call_ttl_hours,
        )

    def _call_url(self, call_id: str, room_id: str) -> str:
        if self.provider == "jitsi":
            return f"https://{self.jitsi_domain}/{room_id}"
        return f"{self.frontend_url}/video-call/{call_id}"

    async def create_call(self, appointment_id: UUID) -> VideoCallData:
        """Open a room for an appointment."""
        now = self.clock()
        call_id = str(uuid4())
        room_id = f"appointment_{appointment_id.hex}_{int(now.timestamp())}"

        call = VideoCallData(
            call_id=call_id,
            call_url=self._call_url(call_id, room_id),
            room_id=room_id,
            expires_at=now + self.ttl,
        )
        logger.info(
            "video_call_created",
            provider=self.provider,
            call_id=call_id,
            appointment_id=str(appointment_id),
        )
        return call

    async def end_call(self, call_id: str) -> VideoCallSession:
        """Close a room and summarize the session."""
        session = VideoCallSession(call_id=call_id, ended_at=self.clock())
        logger.info("video_call_ended", provider=self.provider, call_id=call_id)
        return session

    async def generate_token(self, call_id: str, user_id: UUID, role: CallRole) -> str:
        """Join token for one participant of a call."""
        if self.provider == "jitsi" and self.app_secret:
            now = self.clock()
            claims = {
                "aud": "jitsi",
                "iss": self.app_id or "telemed",
                "sub": self.jitsi_domain,
                "room": "*",
                "iat": int(now.timestamp()),
                "exp": int((now + self.ttl).timestamp()),
                "context": {
                    "user": {"id": str(user_id), "moderator": role == CallRole.HOST},
                    "call_id": call_id,
                },
            }
            return jwt.encode(claims, self.app_secret, algorithm="HS256")

        return f"{self.provider}_{role.value}_{user_id}_{call_id}"
