from __future__ import annotations

import httpx

from vbot.commands import (
    AskCommand,
    CalcCommand,
    CommandRegistry,
    FacebookCommand,
    HelpCommand,
    ImageCommand,
    InstagramCommand,
    PollCommand,
    QuoteCommand,
    QuranCommand,
    SayCommand,
    ScanCommand,
    StickerCommand,
    StickerTextCommand,
    TikTokCommand,
    ToImageCommand,
    TranslateCommand,
    TwitterCommand,
    YoutubeAudioCommand,
    YoutubeVideoCommand,
)
from vbot.config import AppConfig
from vbot.llm import GroqClient
from vbot.media import MediaDownloader
from vbot.presence import Presence
from vbot.router import ConnectionFactory, MessageRouter
from vbot.runtime import RuntimeContext
from vbot.scratch import ScratchSpace
from vbot.security import CredentialCipher
from vbot.session import Credentials, Session, SessionStore
from vbot.transport.base import Connection
from vbot.transport.telegram import TelegramConnection


def build_runtime(config: AppConfig, *, http: httpx.AsyncClient | None = None) -> RuntimeContext:
    http_client = http or httpx.AsyncClient(timeout=config.http_timeout_sec)
    scratch = ScratchSpace(config.temp_dir)
    groq = None
    if config.groq_api_key:
        groq = GroqClient(http_client, config.groq_api_key, model=config.ai_model, base_url=config.ai_base_url)
    return RuntimeContext(
        config=config,
        presence=Presence(config.reactions, typing_sec=config.typing_sec),
        scratch=scratch,
        http=http_client,
        downloader=MediaDownloader(scratch),
        groq=groq,
    )


def build_registry(runtime: RuntimeContext) -> CommandRegistry:
    commands = [
        StickerCommand(runtime),
        StickerTextCommand(runtime),
        ToImageCommand(runtime),
        YoutubeAudioCommand(runtime),
        YoutubeVideoCommand(runtime),
        FacebookCommand(runtime),
        TikTokCommand(runtime),
        InstagramCommand(runtime),
        TwitterCommand(runtime),
        QuoteCommand(runtime),
        AskCommand(runtime),
        TranslateCommand(runtime),
        ImageCommand(runtime),
        PollCommand(runtime),
        SayCommand(runtime),
        QuranCommand(runtime),
        ScanCommand(runtime),
        CalcCommand(runtime),
    ]
    registry: CommandRegistry | None = None
    help_command = HelpCommand(runtime, lambda: registry.list_commands() if registry else [])
    registry = CommandRegistry([*commands, help_command])
    return registry


def telegram_connection_factory(config: AppConfig) -> ConnectionFactory:
    def factory(credentials: Credentials) -> Connection:
        return TelegramConnection(credentials, poll_timeout=config.telegram_poll_timeout_sec)

    return factory


def build_router(
    config: AppConfig,
    runtime: RuntimeContext,
    registry: CommandRegistry,
    *,
    connection_factory: ConnectionFactory | None = None,
) -> MessageRouter:
    store = SessionStore(config.session_dir, CredentialCipher(config.encryption_key or None))
    return MessageRouter(
        Session(prefix=config.prefix),
        registry,
        runtime.presence,
        store,
        connection_factory or telegram_connection_factory(config),
        configured_token=config.telegram_bot_token,
        reconnect_delay=config.reconnect_delay_sec,
    )
