import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, List, Sequence


# Stock phrases Whisper emits for silent or musical stretches.
DEFAULT_FILLER_PHRASES = (
    "Untertitel im Auftrag des ZDF für funk, 2017",
    "Untertitel im Auftrag des ZDF, 2017",
    "Untertitel im Auftrag des ZDF",
    "Untertitel der Amara.org-Community",
    "Untertitelung des ZDF, 2020",
    "Vielen Dank fürs Zuschauen!",
    "Subtitles by the Amara.org community",
    "Thank you for watching!",
    "Thank you for watching.",
    "Thanks for watching!",
    "Thanks for watching.",
    "[Music]",
    "[Musik]",
    "(Musik)",
    "♪",
)

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class TranscriptPiece:
    text: str
    start_time: float


@lru_cache(maxsize=8)
def _edge_filler_pattern(filler_phrases: tuple[str, ...]) -> re.Pattern | None:
    alternatives = "|".join(
        re.escape(phrase) for phrase in sorted(filler_phrases, key=len, reverse=True) if phrase
    )
    if not alternatives:
        return None
    return re.compile(rf"^(?:{alternatives})|(?:{alternatives})$", re.IGNORECASE)


def clean_transcript(text: str, filler_phrases: Sequence[str] = DEFAULT_FILLER_PHRASES) -> str:
    """Strip filler phrases from the start and end of text; phrases mid-sentence are speech."""
    if not text:
        return ""

    cleaned = _WHITESPACE.sub(" ", text).strip()
    pattern = _edge_filler_pattern(tuple(filler_phrases))
    if pattern is None:
        return cleaned

    while cleaned:
        stripped = pattern.sub("", cleaned).strip()
        if stripped == cleaned:
            break
        cleaned = stripped
    return cleaned


def is_valid_transcript(text: str, filler_phrases: Sequence[str] = DEFAULT_FILLER_PHRASES) -> bool:
    """False when nothing but whitespace, punctuation or filler phrases remain."""
    cleaned = clean_transcript(text, filler_phrases)
    return bool(re.search(r"\w", cleaned))


def normalize_word(word: str) -> str:
    return re.sub(r"[^\w]+", "", word.lower(), flags=re.UNICODE)


class TranscriptStitcher:
    def __init__(
        self,
        window_words: int = 5,
        filler_phrases: Sequence[str] = DEFAULT_FILLER_PHRASES,
    ):
        if window_words < 0:
            raise ValueError("window_words must not be negative")
        self.window_words = window_words
        self.filler_phrases = tuple(filler_phrases)

    def merge(self, pieces: Iterable[TranscriptPiece]) -> str:
        ordered = sorted(pieces, key=lambda p: (p.start_time, p.text))
        texts = [clean_transcript(p.text, self.filler_phrases) for p in ordered]
        texts = [t for t in texts if t]
        if not texts:
            return ""

        result = texts[0]
        for incoming in texts[1:]:
            result = self.join(result, incoming)
        return result

    def join(self, accumulated: str, incoming: str) -> str:
        acc_words = accumulated.split()
        inc_words = incoming.split()
        if not acc_words:
            return incoming
        if not inc_words:
            return accumulated

        overlap = self.overlap_words(acc_words, inc_words)
        if overlap:
            acc_words = acc_words[:-overlap]
        if not acc_words:
            return " ".join(inc_words)
        return " ".join(acc_words + inc_words)

    def overlap_words(self, acc_words: List[str], inc_words: List[str]) -> int:
        """Longest k where the last k accumulated words equal the first k incoming words."""
        max_k = min(self.window_words, len(acc_words), len(inc_words))
        tail = [normalize_word(w) for w in acc_words[-max_k:]] if max_k else []
        head = [normalize_word(w) for w in inc_words[:max_k]]

        for k in range(max_k, 0, -1):
            acc_slice = tail[-k:]
            inc_slice = head[:k]
            if acc_slice == inc_slice and any(acc_slice):
                return k
        return 0
