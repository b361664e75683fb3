from __future__ import annotations

import re

# Punctuation and zero-width marks are replaced with a space before splitting.
_PUNCT_RE = re.compile(r"[.,/#!$%^&*;:{}=\-_`~()?\"'<>\[\]\\|]")
_ZERO_WIDTH_RE = re.compile(r"[\u200B-\u200D\uFEFF]")
_WS_RE = re.compile(r"\s+")

_PERSIAN_STOP = {
    "از", "به", "با", "در", "بر", "برای", "که", "و", "یا", "اگر", "ولی", "اما", "تا", "را", "این", "آن", "یک", "ها", "های",
    "درباره", "مورد", "باید", "شاید", "هم", "نیز", "پس", "چون", "چه", "چرا", "بین", "تحت", "روی", "طی", "همین", "همان", "دیگر",
    "هر", "هیچ", "همه", "جایی", "چیزی", "کسی", "بخش", "قسمت", "عنوان", "مثال", "مانند", "مثل", "توسط", "طریق",
    "است", "هست", "بود", "شد", "نیست", "می", "نمی", "من", "تو", "او", "ما", "شما", "آنها", "استفاده", "صورت", "انجام",
    "دارد", "دارند", "داشت", "خواهند", "کرد", "کنند", "کنید", "بکنید", "میکنند", "میکند", "نماید", "گردد",
}

_ENGLISH_STOP = {
    "and", "are", "but", "can", "for", "from", "her", "his", "into", "its", "not", "our", "she",
    "that", "the", "their", "there", "these", "they", "this", "those", "was", "were", "what",
    "when", "where", "who", "why", "with", "you", "your", "has", "have", "had", "been", "will",
    "would", "should", "could", "about", "also", "than", "then", "them", "which", "while",
}

STOP_WORDS = frozenset(_PERSIAN_STOP | _ENGLISH_STOP)


def tokenize(text: str | None) -> list[str]:
    """Lowercase keyword tokens with punctuation, short, numeric and stop words removed."""
    if not text:
        return []
    t = _PUNCT_RE.sub(" ", text.lower())
    t = _ZERO_WIDTH_RE.sub(" ", t)
    t = _WS_RE.sub(" ", t)
    out: list[str] = []
    for tok in t.split(" "):
        if len(tok) <= 2:
            continue
        if tok.isdigit():
            continue
        if tok in STOP_WORDS:
            continue
        out.append(tok)
    return out
