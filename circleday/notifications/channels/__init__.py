"""Channel senders for reminder delivery."""

from ...enums import ChannelType
from .email import EmailSender
from .sms import SmsSender


def build_channel_senders() -> dict[ChannelType, object]:
    """Senders for every channel whose provider credentials are configured."""
    senders: dict[ChannelType, object] = {}
    email = EmailSender.from_env()
    if email:
        senders[ChannelType.EMAIL] = email
    sms = SmsSender.from_env()
    if sms:
        senders[ChannelType.SMS] = sms
    return senders


__all__ = ["EmailSender", "SmsSender", "build_channel_senders"]
