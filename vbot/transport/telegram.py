from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Sequence

from telegram import Bot, InputFile, Message, ReactionTypeEmoji, Update
from telegram.constants import ChatAction, ChatType, ParseMode
from telegram.error import BadRequest, Forbidden, InvalidToken, NetworkError, TelegramError, TimedOut
from telegram.ext import Application, ApplicationBuilder, ContextTypes, MessageHandler, filters

from vbot.models import InboundMessage, MediaRef
from vbot.session import Credentials
from vbot.transport.base import (
    ConnectionClosedError,
    ConnectionState,
    ConnectionUpdate,
    CredentialsUpdate,
    DisconnectReason,
    MessagesUpsert,
    TransportEvent,
)

logger = logging.getLogger("transport.telegram")

ALLOWED_UPDATES = [Update.MESSAGE, Update.CHANNEL_POST]


def classify_error(exc: BaseException) -> DisconnectReason:
    if isinstance(exc, (InvalidToken, Forbidden)):
        return DisconnectReason.LOGGED_OUT
    return DisconnectReason.CONNECTION_LOST


def _media_from_message(message: Message) -> MediaRef | None:
    if message.photo:
        largest = message.photo[-1]
        return MediaRef(kind="photo", file_id=largest.file_id, mime_type="image/jpeg", file_size=largest.file_size)
    if message.sticker:
        sticker = message.sticker
        mime = "video/webm" if sticker.is_video else ("application/x-tgsticker" if sticker.is_animated else "image/webp")
        return MediaRef(
            kind="sticker",
            file_id=sticker.file_id,
            mime_type=mime,
            file_size=sticker.file_size,
            is_animated=sticker.is_animated,
            is_video=sticker.is_video,
        )
    if message.animation:
        anim = message.animation
        return MediaRef(
            kind="animation",
            file_id=anim.file_id,
            mime_type=anim.mime_type or "video/mp4",
            file_name=anim.file_name,
            file_size=anim.file_size,
        )
    if message.video:
        video = message.video
        return MediaRef(
            kind="video",
            file_id=video.file_id,
            mime_type=video.mime_type or "video/mp4",
            file_name=video.file_name,
            file_size=video.file_size,
        )
    if message.video_note:
        note = message.video_note
        return MediaRef(kind="video_note", file_id=note.file_id, mime_type="video/mp4", file_size=note.file_size)
    if message.audio:
        audio = message.audio
        return MediaRef(
            kind="audio",
            file_id=audio.file_id,
            mime_type=audio.mime_type,
            file_name=audio.file_name,
            file_size=audio.file_size,
        )
    if message.voice:
        voice = message.voice
        return MediaRef(kind="voice", file_id=voice.file_id, mime_type=voice.mime_type, file_size=voice.file_size)
    if message.document:
        doc = message.document
        return MediaRef(
            kind="document",
            file_id=doc.file_id,
            mime_type=doc.mime_type,
            file_name=doc.file_name,
            file_size=doc.file_size,
        )
    return None


def normalize_message(
    message: Message,
    *,
    bot_id: int | None,
    is_channel_post: bool = False,
    include_quoted: bool = True,
) -> InboundMessage:
    if message.from_user is not None:
        sender_id = message.from_user.id
    elif message.sender_chat is not None:
        sender_id = message.sender_chat.id
    else:
        sender_id = message.chat.id

    quoted = None
    if include_quoted and message.reply_to_message is not None:
        quoted = normalize_message(message.reply_to_message, bot_id=bot_id, include_quoted=False)

    return InboundMessage(
        chat_id=message.chat.id,
        message_id=message.message_id,
        sender_id=sender_id,
        timestamp=int(message.date.timestamp()),
        body_text=message.text or message.caption,
        is_from_self=bool(bot_id is not None and message.from_user is not None and message.from_user.id == bot_id),
        is_broadcast_status=is_channel_post or message.chat.type == ChatType.CHANNEL,
        quoted=quoted,
        media=_media_from_message(message),
    )


def normalize_update(update: Update, *, bot_id: int | None) -> InboundMessage | None:
    message = update.message or update.channel_post
    if message is None:
        return None
    try:
        return normalize_message(message, bot_id=bot_id, is_channel_post=update.channel_post is not None)
    except (AttributeError, TypeError, ValueError):
        logger.warning("Dropping malformed update id=%s", update.update_id, exc_info=True)
        return None


class TelegramConnection:
    def __init__(self, credentials: Credentials, *, poll_timeout: int = 10, retry_delay: float = 1.0) -> None:
        self.events: asyncio.Queue[TransportEvent] = asyncio.Queue()
        self._credentials = credentials
        self._poll_timeout = poll_timeout
        self._retry_delay = retry_delay
        self._application: Application | None = None
        self._poll_task: asyncio.Task | None = None
        self._bot_id: int | None = credentials.bot_id
        self._close_reported = False

    @property
    def _bot(self) -> Bot:
        if self._application is None:
            raise ConnectionClosedError("Telegram connection is not open")
        return self._application.bot

    async def open(self) -> None:
        application = ApplicationBuilder().token(self._credentials.bot_token).updater(None).build()
        application.add_handler(MessageHandler(~filters.UpdateType.EDITED, self._handle_update))
        self._application = application
        try:
            await application.initialize()
            me = await application.bot.get_me()
            await application.bot.delete_webhook()
            await application.start()
        except TelegramError as exc:
            logger.error("Failed to open Telegram connection: %s", exc)
            self._report_close(classify_error(exc), str(exc))
            return

        self._bot_id = me.id
        self._poll_task = asyncio.create_task(self._poll(application), name="telegram-polling")
        logger.info("Connected to Telegram as @%s", me.username)
        self.events.put_nowait(CredentialsUpdate(self._credentials.with_identity(me.id, me.username)))
        self.events.put_nowait(ConnectionUpdate(ConnectionState.OPEN))

    async def close(self) -> None:
        application = self._application
        if application is None:
            return
        self._application = None
        self._close_reported = True
        poll_task, self._poll_task = self._poll_task, None
        if poll_task is not None:
            poll_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await poll_task
        try:
            if application.running:
                await application.stop()
            await application.shutdown()
        except (TelegramError, RuntimeError):
            logger.warning("Error while closing Telegram connection", exc_info=True)

    def _report_close(self, reason: DisconnectReason, detail: str = "") -> None:
        if self._close_reported:
            return
        self._close_reported = True
        self.events.put_nowait(ConnectionUpdate(ConnectionState.CLOSE, reason=reason, detail=detail))

    async def _poll(self, application: Application) -> None:
        """Long-poll ``getUpdates`` into the application's queue until polling aborts.

        Timeouts and transient API errors are retried in place. A network failure or a
        rejected token ends the loop with a CLOSE event so the router can react.
        """
        offset: int | None = None
        while True:
            try:
                updates = await application.bot.get_updates(
                    offset=offset,
                    timeout=self._poll_timeout,
                    allowed_updates=ALLOWED_UPDATES,
                )
            except TimedOut:
                continue
            except TelegramError as exc:
                if not self._polling_aborted(exc):
                    await asyncio.sleep(self._retry_delay)
                    continue
                return
            except Exception as exc:
                logger.exception("Polling crashed")
                self._report_close(DisconnectReason.CONNECTION_LOST, str(exc))
                return
            for update in updates:
                offset = update.update_id + 1
                await application.update_queue.put(update)

    def _polling_aborted(self, exc: TelegramError) -> bool:
        reason = classify_error(exc)
        if reason is DisconnectReason.CONNECTION_LOST and not isinstance(exc, NetworkError):
            logger.warning("Polling error: %s", exc)
            return False
        logger.warning("Polling stopped: %s (%s)", exc, reason.value)
        self._report_close(reason, str(exc))
        return True

    async def _handle_update(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = normalize_update(update, bot_id=self._bot_id)
        if message is None:
            return
        self.events.put_nowait(MessagesUpsert((message,)))

    async def send_text(self, chat_id: int, text: str, *, reply_to: int | None = None) -> None:
        try:
            await self._bot.send_message(
                chat_id=chat_id,
                text=text,
                parse_mode=ParseMode.MARKDOWN,
                reply_to_message_id=reply_to,
            )
        except BadRequest:
            await self._bot.send_message(chat_id=chat_id, text=text, reply_to_message_id=reply_to)

    async def send_photo(
        self, chat_id: int, data: bytes, *, caption: str | None = None, reply_to: int | None = None
    ) -> None:
        await self._bot.send_photo(
            chat_id=chat_id,
            photo=InputFile(data, filename="image.png"),
            caption=caption,
            reply_to_message_id=reply_to,
        )

    async def send_video(
        self, chat_id: int, data: bytes, *, caption: str | None = None, reply_to: int | None = None
    ) -> None:
        await self._bot.send_video(
            chat_id=chat_id,
            video=InputFile(data, filename="video.mp4"),
            caption=caption,
            supports_streaming=True,
            reply_to_message_id=reply_to,
        )

    async def send_audio(
        self, chat_id: int, data: bytes, *, filename: str, reply_to: int | None = None
    ) -> None:
        await self._bot.send_audio(
            chat_id=chat_id,
            audio=InputFile(data, filename=filename),
            reply_to_message_id=reply_to,
        )

    async def send_voice(self, chat_id: int, data: bytes, *, reply_to: int | None = None) -> None:
        await self._bot.send_voice(
            chat_id=chat_id,
            voice=InputFile(data, filename="voice.mp3"),
            reply_to_message_id=reply_to,
        )

    async def send_sticker(
        self, chat_id: int, data: bytes, *, filename: str, reply_to: int | None = None
    ) -> None:
        await self._bot.send_sticker(
            chat_id=chat_id,
            sticker=InputFile(data, filename=filename),
            reply_to_message_id=reply_to,
        )

    async def send_document(
        self, chat_id: int, data: bytes, *, filename: str, reply_to: int | None = None
    ) -> None:
        await self._bot.send_document(
            chat_id=chat_id,
            document=InputFile(data, filename=filename),
            reply_to_message_id=reply_to,
        )

    async def send_poll(
        self, chat_id: int, question: str, options: Sequence[str], *, reply_to: int | None = None
    ) -> None:
        await self._bot.send_poll(
            chat_id=chat_id,
            question=question,
            options=list(options),
            is_anonymous=False,
            allows_multiple_answers=False,
            reply_to_message_id=reply_to,
        )

    async def react(self, message: InboundMessage, emoji: str) -> None:
        await self._bot.set_message_reaction(
            chat_id=message.chat_id,
            message_id=message.message_id,
            reaction=[ReactionTypeEmoji(emoji=emoji)],
        )

    async def send_typing(self, chat_id: int) -> None:
        await self._bot.send_chat_action(chat_id=chat_id, action=ChatAction.TYPING)

    async def download_media(self, media: MediaRef) -> bytes:
        file = await self._bot.get_file(media.file_id)
        data = await file.download_as_bytearray()
        return bytes(data)
