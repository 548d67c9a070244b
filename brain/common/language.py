"""
Language Detection

Per-question language detection using langdetect with a Unicode script
fallback. The answer prompt uses the result to tell the model which
language to reply in.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from langdetect import DetectorFactory, detect_langs
from langdetect.lang_detect_exception import LangDetectException

logger = logging.getLogger("brain.common.language")

# Seed langdetect for deterministic results
DetectorFactory.seed = 0


LANGUAGE_NAMES = {
    "en": "English",
    "ja": "Japanese",
    "ko": "Korean",
    "zh-cn": "Chinese",
    "zh-tw": "Chinese",
    "zh": "Chinese",
    "de": "German",
    "fr": "French",
    "es": "Spanish",
    "pt": "Portuguese",
    "it": "Italian",
    "nl": "Dutch",
}


@dataclass(frozen=True)
class LanguageInfo:
    """Detected language information"""
    code: str           # ISO 639-1 ("en", "ja", "ko"), langdetect style for zh
    confidence: float   # 0.0~1.0
    script: str         # "Latin", "Hangul", "CJK", "Kana"

    @property
    def is_english(self) -> bool:
        return self.code == "en"

    @property
    def name(self) -> str:
        return LANGUAGE_NAMES.get(self.code, self.code)

    def answer_instruction(self) -> str:
        """Prompt line fixing the reply language"""
        return f"Answer in {self.name}, the language the question was asked in."


# Unicode range based script detection
_SCRIPT_RANGES = [
    (0x3040, 0x309F, "Kana", "ja"),      # Hiragana
    (0x30A0, 0x30FF, "Kana", "ja"),      # Katakana
    (0xAC00, 0xD7AF, "Hangul", "ko"),    # Hangul Syllables
    (0x1100, 0x11FF, "Hangul", "ko"),    # Hangul Jamo
    (0x3130, 0x318F, "Hangul", "ko"),    # Hangul Compatibility Jamo
    (0x4E00, 0x9FFF, "CJK", "zh"),       # CJK Unified Ideographs
    (0x3400, 0x4DBF, "CJK", "zh"),       # CJK Extension A
]


def _script_of(ch: str) -> Tuple[str, Optional[str]]:
    cp = ord(ch)
    for start, end, script, lang in _SCRIPT_RANGES:
        if start <= cp <= end:
            return script, lang
    return "Latin", None


def _detect_script(text: str) -> Tuple[str, Optional[str]]:
    """Dominant script of the text, with the language it implies (if any)"""
    counts: Dict[str, int] = {}
    total = 0
    for ch in text:
        if ch.isspace() or not ch.isalpha():
            continue
        total += 1
        script, _ = _script_of(ch)
        counts[script] = counts.get(script, 0) + 1

    if total == 0:
        return "Latin", None

    # Japanese mixes kanji with kana; any kana decides it
    if counts.get("Kana"):
        return "Kana", "ja"
    if counts.get("Hangul", 0) > total * 0.15:
        return "Hangul", "ko"
    if counts.get("CJK", 0) > total * 0.15:
        return "CJK", "zh"
    return "Latin", None


def detect_language(text: Optional[str]) -> LanguageInfo:
    """Detect the language of a question.

    Non-Latin scripts are decided by Unicode ranges (langdetect confuses
    short CJK questions). Latin text goes through langdetect; very short
    text and detection failures default to English.
    """
    if not text or not text.strip():
        return LanguageInfo(code="en", confidence=1.0, script="Latin")

    cleaned = text.strip()
    script, script_lang = _detect_script(cleaned)
    if script_lang:
        return LanguageInfo(code=script_lang, confidence=0.9, script=script)

    if len(cleaned) < 10:
        return LanguageInfo(code="en", confidence=0.5, script="Latin")

    try:
        results = detect_langs(cleaned)
        if results:
            top = results[0]
            # langdetect is noisy on short Latin text; only trust it when sure
            if top.lang != "en" and top.prob < 0.9:
                return LanguageInfo(code="en", confidence=0.5, script="Latin")
            return LanguageInfo(code=top.lang, confidence=round(top.prob, 4), script="Latin")
    except LangDetectException as e:
        logger.debug("langdetect failed: %s", e)

    return LanguageInfo(code="en", confidence=0.5, script="Latin")
