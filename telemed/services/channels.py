"""Delivery adapters, one per notification channel."""

import asyncio
import smtplib
from email.message import EmailMessage
from typing import Protocol

import structlog
from firebase_admin import messaging
from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client

from telemed.config import Settings
from telemed.core.exceptions import DeliveryError
from telemed.core.firebase import is_firebase_initialized
from telemed.schemas.notifications import NotificationChannel, NotificationRecord
from telemed.schemas.users import UserRecord

logger = structlog.get_logger(__name__)


class ChannelSender(Protocol):
    """Delivers a notification over one medium. Raises on failure."""

    async def send(self, notification: NotificationRecord, recipient: UserRecord | None) -> None:
        """Attempt delivery."""
        ...


class InAppSender:
    """In-app delivery is the stored record itself."""

    async def send(self, notification: NotificationRecord, recipient: UserRecord | None) -> None:
        logger.debug("in_app_notification_stored", notification_id=str(notification.id))


class EmailSender:
    """Sends notifications over SMTP."""

    def __init__(
        self,
        host: str,
        port: int,
        user: str | None,
        password: str | None,
        sender_name: str,
        timeout: float = 10,
    ):
        """Initialize with SMTP connection details."""
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender_name = sender_name
        self.timeout = timeout

    def _build_message(self, notification: NotificationRecord, to_email: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = notification.title
        msg["From"] = f"{self.sender_name} <{self.user}>"
        msg["To"] = to_email

        body = notification.message
        if notification.action_url:
            body = f"{body}\n\n{notification.action_text or 'Open'}: {notification.action_url}"
        msg.set_content(body)
        return msg

    def _deliver(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            server.ehlo()
            if self.port == 587:
                server.starttls()
                server.ehlo()
            server.login(self.user, self.password)
            server.send_message(msg)

    async def send(self, notification: NotificationRecord, recipient: UserRecord | None) -> None:
        if not self.user or not self.password:
            raise DeliveryError(NotificationChannel.EMAIL.value, "SMTP credentials not configured")
        if recipient is None or not recipient.email:
            raise DeliveryError(NotificationChannel.EMAIL.value, "Recipient has no email address")

        msg = self._build_message(notification, recipient.email)
        try:
            await asyncio.to_thread(self._deliver, msg)
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryError(NotificationChannel.EMAIL.value, str(e)) from e

        logger.info(
            "email_notification_sent",
            notification_id=str(notification.id),
            recipient_id=str(recipient.id),
        )


class SmsSender:
    """Sends notifications as text messages through Twilio."""

    def __init__(self, account_sid: str | None, auth_token: str | None, from_number: str | None):
        """Initialize with Twilio credentials."""
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self._client: Client | None = None

    def _get_client(self) -> Client:
        if self._client is None:
            self._client = Client(self.account_sid, self.auth_token)
        return self._client

    def _deliver(self, to_number: str, body: str) -> str:
        message = self._get_client().messages.create(
            to=to_number, from_=self.from_number, body=body
        )
        return message.sid

    async def send(self, notification: NotificationRecord, recipient: UserRecord | None) -> None:
        if not self.account_sid or not self.auth_token or not self.from_number:
            raise DeliveryError(NotificationChannel.SMS.value, "Twilio credentials not configured")
        if recipient is None or not recipient.phone:
            raise DeliveryError(NotificationChannel.SMS.value, "Recipient has no phone number")

        body = f"{notification.title}: {notification.message}"
        try:
            sid = await asyncio.to_thread(self._deliver, recipient.phone, body)
        except TwilioRestException as e:
            raise DeliveryError(NotificationChannel.SMS.value, str(e)) from e

        logger.info("sms_notification_sent", notification_id=str(notification.id), sid=sid)


class PushSender:
    """Sends notifications through Firebase Cloud Messaging to a per-user topic."""

    @staticmethod
    def topic_for(user_id: object) -> str:
        """FCM topic every device of a user subscribes to."""
        return f"user-{user_id}"

    def _build_message(self, notification: NotificationRecord) -> messaging.Message:
        data = {key: str(value) for key, value in (notification.data or {}).items()}
        data["notification_id"] = str(notification.id)
        data["type"] = notification.notification_type.value
        if notification.action_url:
            data["action_url"] = notification.action_url

        return messaging.Message(
            notification=messaging.Notification(
                title=notification.title,
                body=notification.message,
            ),
            data=data,
            topic=self.topic_for(notification.recipient_id),
            android=messaging.AndroidConfig(priority="high"),
        )

    async def send(self, notification: NotificationRecord, recipient: UserRecord | None) -> None:
        if not is_firebase_initialized():
            raise DeliveryError(NotificationChannel.PUSH.value, "Firebase not initialized")

        message_id = await asyncio.to_thread(messaging.send, self._build_message(notification))
        logger.info(
            "push_notification_sent",
            notification_id=str(notification.id),
            message_id=message_id,
        )


class ChannelRegistry:
    """Maps each channel to the sender that delivers it."""

    def __init__(self, senders: dict[NotificationChannel, ChannelSender] | None = None):
        """Initialize with an optional channel to sender mapping."""
        self._senders: dict[NotificationChannel, ChannelSender] = dict(senders or {})

    def register(self, channel: NotificationChannel, sender: ChannelSender) -> None:
        """Install or replace the sender for a channel."""
        self._senders[channel] = sender

    def get(self, channel: NotificationChannel) -> ChannelSender | None:
        """Sender for a channel, or None if none is registered."""
        return self._senders.get(channel)


def build_channel_registry(settings: Settings) -> ChannelRegistry:
    """Registry with the production sender of every channel."""
    return ChannelRegistry(
        {
            NotificationChannel.IN_APP: InAppSender(),
            NotificationChannel.EMAIL: EmailSender(
                host=settings.smtp_host,
                port=settings.smtp_port,
                user=settings.smtp_user,
                password=settings.smtp_password,
                sender_name=settings.email_sender_name,
            ),
            NotificationChannel.SMS: SmsSender(
                account_sid=settings.twilio_account_sid,
                auth_token=settings.twilio_auth_token,
                from_number=settings.twilio_phone_number,
            ),
            NotificationChannel.PUSH: PushSender(),
        }
    )
