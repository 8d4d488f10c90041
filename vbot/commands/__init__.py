from vbot.commands.ai import AskCommand, QuoteCommand, TranslateCommand
from vbot.commands.base import BaseCommand, Command
from vbot.commands.calc import CalcCommand
from vbot.commands.download import (
    FacebookCommand,
    InstagramCommand,
    TikTokCommand,
    TwitterCommand,
    YoutubeAudioCommand,
    YoutubeVideoCommand,
)
from vbot.commands.errors import (
    CommandError,
    CommandUsageError,
    MediaTooLargeError,
    MissingApiKeyError,
    RegistryError,
    UpstreamError,
)
from vbot.commands.help import HelpCommand
from vbot.commands.image import ImageCommand
from vbot.commands.poll import PollCommand
from vbot.commands.quran import QuranCommand
from vbot.commands.registry import CommandRegistry
from vbot.commands.scan import ScanCommand
from vbot.commands.sticker import StickerCommand, StickerTextCommand, ToImageCommand
from vbot.commands.tts import SayCommand

__all__ = [
    "AskCommand",
    "BaseCommand",
    "CalcCommand",
    "Command",
    "CommandError",
    "CommandRegistry",
    "CommandUsageError",
    "FacebookCommand",
    "HelpCommand",
    "ImageCommand",
    "InstagramCommand",
    "MediaTooLargeError",
    "MissingApiKeyError",
    "PollCommand",
    "QuoteCommand",
    "QuranCommand",
    "RegistryError",
    "SayCommand",
    "ScanCommand",
    "StickerCommand",
    "StickerTextCommand",
    "TikTokCommand",
    "ToImageCommand",
    "TranslateCommand",
    "TwitterCommand",
    "UpstreamError",
    "YoutubeAudioCommand",
    "YoutubeVideoCommand",
]
