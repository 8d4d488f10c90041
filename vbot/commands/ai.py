from __future__ import annotations

from vbot.commands.base import BaseCommand
from vbot.commands.errors import CommandUsageError, MissingApiKeyError, UpstreamError
from vbot.llm import GroqClient, LLMError
from vbot.models import InboundMessage
from vbot.transport.base import Connection

FALLBACK_QUOTE = "Keep going and never give up! 💪"
TRANSLATE_MAX_CHARS = 500

LANGUAGES = {
    "id": "Bahasa Indonesia",
    "en": "English",
    "jp": "Japanese",
}


class _GroqCommand(BaseCommand):
    category = "AI"

    def client(self) -> GroqClient:
        if self.runtime.groq is None:
            raise MissingApiKeyError("GROQ_API_KEY")
        return self.runtime.groq

    async def ask_model(self, prompt: str, *, temperature: float, max_tokens: int, system: str | None = None) -> str:
        client = self.client()
        try:
            return await client.complete(prompt, system=system, temperature=temperature, max_tokens=max_tokens)
        except LLMError as exc:
            if exc.status_code in (401, 403):
                raise UpstreamError("❌ The Groq API key is invalid. Check GROQ_API_KEY in .env.", detail=str(exc)) from exc
            if exc.status_code == 429:
                raise UpstreamError("❌ Rate limit reached. Try again later. ⏳", detail=str(exc)) from exc
            raise UpstreamError(self.failure_text, detail=str(exc)) from exc


class QuoteCommand(_GroqCommand):
    name = "quote"
    description = "Motivational quote, optionally about some text"
    usage = "quote [context]"
    failure_text = "❌ Failed to create a quote."

    async def run(self, message: InboundMessage, connection: Connection, args: str) -> None:
        self.client()
        context = self.text_or_quoted(message, args)
        await self.presence.processing(connection, message)
        language = self.runtime.config.ai_language
        if context:
            prompt = (
                f'Someone says: "{context}"\n\n'
                f"Reply with one relevant, encouraging motivational quote in {language}. "
                "Only the quote, no extra explanation."
            )
        else:
            prompt = (
                f"Give one inspiring, meaningful motivational quote in {language}. "
                "Only the quote, no extra explanation."
            )
        quote = await self.ask_model(prompt, temperature=0.8, max_tokens=200)
        await self.reply(connection, message, quote or FALLBACK_QUOTE)


class TranslateCommand(_GroqCommand):
    name = "tr"
    aliases = ("translate",)
    description = "Translate text"
    usage = "tr <id|en|jp> <text>"
    failure_text = "❌ Translation failed."

    def parse(self, message: InboundMessage, args: str) -> tuple[str, str]:
        parts = args.split(None, 1)
        if not parts:
            raise CommandUsageError(self.help_text())
        code = parts[0].lower()
        if code not in LANGUAGES:
            raise CommandUsageError(f"❌ Unsupported language '{code}'.\n\n{self.help_text()}")
        text = parts[1].strip() if len(parts) > 1 else ""
        if not text and message.quoted is not None:
            text = message.quoted_text
        if not text:
            raise CommandUsageError(f"❌ Nothing to translate.\n\n{self.help_text()}")
        if len(text) > TRANSLATE_MAX_CHARS:
            raise CommandUsageError(f"❌ Text is too long. Maximum is {TRANSLATE_MAX_CHARS} characters.")
        return code, text

    def help_text(self) -> str:
        codes = "\n".join(f"• {code} = {name}" for code, name in LANGUAGES.items())
        return f"Usage: {self.usage_text()}\n\nLanguages:\n{codes}"

    async def run(self, message: InboundMessage, connection: Connection, args: str) -> None:
        code, text = self.parse(message, args)
        self.client()
        await self.presence.processing(connection, message)
        target = LANGUAGES[code]
        prompt = (
            f"Translate the following text to {target}. "
            "Output only the translation, with no explanation, notes or quotes.\n\n"
            f"{text}"
        )
        translation = await self.ask_model(prompt, temperature=0.3, max_tokens=300)
        if not translation:
            raise UpstreamError(self.failure_text, detail="empty translation")
        await self.reply(connection, message, f"🌐 *{target}*\n\n{translation}")


class AskCommand(_GroqCommand):
    name = "ai"
    aliases = ("ask", "tanya")
    description = "Ask the AI anything"
    usage = "ai <question>"
    failure_text = "❌ The AI could not answer right now."

    async def run(self, message: InboundMessage, connection: Connection, args: str) -> None:
        question = self.require_text(message, args, "Ask a question or reply to a message.")
        self.client()
        await self.presence.processing(connection, message)
        system = (
            "You are a helpful assistant inside a chat group. Answer concisely and clearly. "
            f"Reply in the language of the question; default to {self.runtime.config.ai_language}."
        )
        answer = await self.ask_model(question, system=system, temperature=0.7, max_tokens=1000)
        await self.reply(connection, message, answer or self.failure_text)
