from __future__ import annotations

import re
from dataclasses import dataclass

import httpx

from vbot.commands.base import BaseCommand
from vbot.commands.errors import CommandUsageError, UpstreamError
from vbot.models import InboundMessage
from vbot.transport.base import Connection

EQURAN_SURAH_URL = "https://equran.id/api/v2/surat/{number}"
MAX_VERSES = 20

# Surah number -> accepted spellings, compared after lowercasing and stripping non-alphanumerics.
SURAH_ALIASES: dict[int, tuple[str, ...]] = {
    1: ("alfatihah", "fatihah"),
    2: ("albaqarah", "baqarah", "sapi"),
    3: ("aliimran", "imran"),
    4: ("annisa", "nisa", "wanita"),
    5: ("almaidah", "maidah"),
    6: ("alanam", "anam"),
    7: ("alaraf", "araf"),
    8: ("alanfal", "anfal"),
    9: ("attaubah", "taubah"),
    10: ("yunus",),
    11: ("hud",),
    12: ("yusuf",),
    13: ("arrad", "rad"),
    14: ("ibrahim",),
    15: ("alhijr", "hijr"),
    16: ("annahl", "nahl"),
    17: ("alisra", "isra"),
    18: ("alkahfi", "kahfi", "gua"),
    19: ("maryam",),
    20: ("thaha", "taha"),
    21: ("alanbiya", "anbiya"),
    22: ("alhajj", "hajj", "haji"),
    23: ("almuminun", "muminun"),
    24: ("annur", "nur", "cahaya"),
    25: ("alfurqan", "furqan"),
    26: ("asysyuara", "syuara"),
    27: ("annaml", "naml", "semut"),
    28: ("alqashash", "qashash"),
    29: ("alankabut", "ankabut", "laba"),
    30: ("arrum", "rum"),
    31: ("luqman",),
    32: ("assajdah", "sajdah"),
    33: ("alahzab", "ahzab"),
    34: ("saba",),
    35: ("fathir",),
    36: ("yasin",),
    37: ("ashshaffat", "shaffat"),
    38: ("shad",),
    39: ("azzumar", "zumar"),
    40: ("ghafir",),
    41: ("fushilat", "fussilat"),
    42: ("asysyura", "syura"),
    43: ("azzukhruf", "zukhruf"),
    44: ("addukhan", "dukhan"),
    45: ("aljasiyah", "jasiyah"),
    46: ("alahqaf", "ahqaf"),
    47: ("muhammad",),
    48: ("alfath", "fath"),
    49: ("alhujurat", "hujurat"),
    50: ("qaf",),
    51: ("azzariyat", "zariyat"),
    52: ("aththur", "thur"),
    53: ("annajm", "najm"),
    54: ("alqamar", "qamar", "bulan"),
    55: ("arrahman", "rahman"),
    56: ("alwaqiah", "waqiah"),
    57: ("alhadid", "hadid", "besi"),
    58: ("almujadilah", "mujadilah"),
    59: ("alhasyr", "hasyr"),
    60: ("almumtahanah", "mumtahanah"),
    61: ("ashshaff", "shaff"),
    62: ("aljumuah", "jumuah", "jumat"),
    63: ("almunafiqun", "munafiqun"),
    64: ("attaghabun", "taghabun"),
    65: ("aththalaq", "thalaq"),
    66: ("attahrim", "tahrim"),
    67: ("almulk", "mulk", "kerajaan"),
    68: ("alqalam", "qalam", "pena"),
    69: ("alhaqqah", "haqqah"),
    70: ("almaarij", "maarij"),
    71: ("nuh",),
    72: ("aljinn", "jinn", "jin"),
    73: ("almuzzammil", "muzzammil"),
    74: ("almuddatsir", "muddatsir"),
    75: ("alqiyamah", "qiyamah"),
    76: ("alinsan", "insan"),
    77: ("almursalat", "mursalat"),
    78: ("annaba", "naba"),
    79: ("annaziat", "naziat"),
    80: ("abasa",),
    81: ("attakwir", "takwir"),
    82: ("alinfithar", "infithar"),
    83: ("almuthaffifin", "muthaffifin"),
    84: ("alinsyiqaq", "insyiqaq"),
    85: ("alburuj", "buruj"),
    86: ("aththariq", "thariq"),
    87: ("alala", "ala"),
    88: ("alghasyiyah", "ghasyiyah"),
    89: ("alfajr", "fajr"),
    90: ("albalad", "balad"),
    91: ("asysyams", "syams", "matahari"),
    92: ("allail", "lail", "malam"),
    93: ("adhdhuha", "dhuha", "duha"),
    94: ("alinsyirah", "insyirah", "alamnasyrah"),
    95: ("attin", "tin"),
    96: ("alalaq", "alaq"),
    97: ("alqadr", "qadr"),
    98: ("albayyinah", "bayyinah"),
    99: ("azzalzalah", "zalzalah"),
    100: ("aladiyat", "adiyat"),
    101: ("alqariah", "qariah"),
    102: ("attakatsur", "takatsur"),
    103: ("alashr", "ashr", "asar"),
    104: ("alhumazah", "humazah"),
    105: ("alfil", "fil", "gajah"),
    106: ("quraisy", "quraish"),
    107: ("almaun", "maun"),
    108: ("alkautsar", "kautsar"),
    109: ("alkafirun", "kafirun"),
    110: ("annashr", "nashr"),
    111: ("allahab", "lahab"),
    112: ("alikhlas", "ikhlas"),
    113: ("alfalaq", "falaq"),
    114: ("annas", "nas"),
}

SURAH_BY_NAME: dict[str, int] = {alias: number for number, aliases in SURAH_ALIASES.items() for alias in aliases}


@dataclass(frozen=True)
class VerseRequest:
    surah: int
    start: int
    end: int
    truncated: bool = False


def resolve_surah(raw: str) -> int | None:
    key = re.sub(r"[^a-z0-9]", "", raw.lower())
    if not key:
        return None
    number = int(key) if key.isdigit() else SURAH_BY_NAME.get(key)
    if number is None or not 1 <= number <= 114:
        return None
    return number


def parse_verse_request(args: str) -> VerseRequest:
    """Parse ``<surah name|number> <n|a-b>`` into a bounded verse range."""
    parts = args.split()
    if len(parts) < 2:
        raise ValueError("format")
    surah = resolve_surah(parts[0])
    if surah is None:
        raise LookupError(parts[0])

    match = re.fullmatch(r"(\d+)(?:-(\d+))?", parts[1])
    if not match:
        raise ValueError("verse")
    start = int(match.group(1))
    end = int(match.group(2)) if match.group(2) else start
    if start > end:
        start, end = end, start
    if start < 1:
        raise ValueError("verse")

    truncated = end - start + 1 > MAX_VERSES
    if truncated:
        end = start + MAX_VERSES - 1
    return VerseRequest(surah=surah, start=start, end=end, truncated=truncated)


def format_verses(surah_name: str, number: int, verses: list[dict]) -> str:
    lines = [f"📖 *Q.S {surah_name} ({number})*"]
    for verse in verses:
        lines.append(
            f"*Ayat {verse['nomorAyat']}*\n{verse['teksArab']}\n_{verse['teksLatin']}_\n\n\"{verse['teksIndonesia']}\""
        )
    return "\n\n".join(lines)


class QuranCommand(BaseCommand):
    name = "quran"
    description = "Quran verses with transliteration and translation"
    usage = "quran <surah> <verse|from-to>"
    category = "Islamic"
    failure_text = "❌ Failed to fetch Quran data. Try again."

    async def run(self, message: InboundMessage, connection: Connection, args: str) -> None:
        prefix = self.runtime.config.prefix
        try:
            request = parse_verse_request(args)
        except LookupError as exc:
            raise CommandUsageError("❌ Surah name or number not found!") from exc
        except ValueError as exc:
            raise CommandUsageError(
                "❌ Wrong format!\n\nExamples:\n"
                f"{prefix}quran yasin 1\n{prefix}quran yasin 1-5\n{prefix}quran 36 1"
            ) from exc

        if request.truncated:
            await self.reply(connection, message, f"⚠️ At most {MAX_VERSES} verses at once!")

        await self.presence.processing(connection, message)
        self.logger.info("Fetching Q.S %s:%s-%s", request.surah, request.start, request.end)
        try:
            resp = await self.runtime.http.get(EQURAN_SURAH_URL.format(number=request.surah))
            resp.raise_for_status()
            data = resp.json()["data"]
            verses = data["ayat"]
            surah_name = data["namaLatin"]
        except httpx.HTTPError as exc:
            raise UpstreamError(f"❌ Failed to fetch surah {request.surah}.", detail=str(exc)) from exc
        except (KeyError, TypeError, ValueError) as exc:
            raise UpstreamError(self.failure_text, detail=f"malformed response: {exc}") from exc

        selected = [v for v in verses if request.start <= int(v["nomorAyat"]) <= request.end]
        if not selected:
            raise CommandUsageError(
                f"❌ Verses {request.start}-{request.end} not found in Surah {surah_name}."
            )
        await self.reply(connection, message, format_verses(surah_name, request.surah, selected))
