from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class MediaRef:
    kind: str
    file_id: str
    mime_type: str | None = None
    file_name: str | None = None
    file_size: int | None = None
    is_animated: bool = False
    is_video: bool = False

    @property
    def is_image(self) -> bool:
        if self.kind == "photo":
            return True
        if self.kind == "sticker":
            return not (self.is_animated or self.is_video)
        return self.kind == "document" and (self.mime_type or "").lower() in IMAGE_MIME_TYPES

    @property
    def is_motion(self) -> bool:
        if self.kind in ("video", "animation", "video_note"):
            return True
        if self.kind == "sticker":
            return self.is_video
        mime = (self.mime_type or "").lower()
        return self.kind == "document" and (mime.startswith("video/") or mime == "image/gif")


IMAGE_MIME_TYPES = frozenset({"image/jpeg", "image/jpg", "image/png", "image/webp"})


@dataclass(frozen=True)
class InboundMessage:
    chat_id: int
    message_id: int
    sender_id: int
    timestamp: int
    body_text: str | None = None
    is_from_self: bool = False
    is_broadcast_status: bool = False
    quoted: InboundMessage | None = None
    media: MediaRef | None = None

    @property
    def quoted_text(self) -> str:
        if self.quoted is None:
            return ""
        return (self.quoted.body_text or "").strip()


@dataclass(frozen=True)
class CommandInvocation:
    command_name: str
    argument_text: str
