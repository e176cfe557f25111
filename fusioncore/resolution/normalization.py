"""Text normalization applied before any similarity algorithm runs."""

import unicodedata
from typing import List

# Latin letters with no NFKD decomposition into base letter + combining mark
TRANSLITERATIONS = str.maketrans({
    "ø": "o", "Ø": "O",
    "ł": "l", "Ł": "L",
    "đ": "d", "Đ": "D",
    "ð": "d", "Ð": "D",
    "ħ": "h", "Ħ": "H",
    "ı": "i",
    "ŧ": "t", "Ŧ": "T",
    "æ": "ae", "Æ": "AE",
    "œ": "oe", "Œ": "OE",
    "þ": "th", "Þ": "TH",
    "ß": "ss",
})


def transliterate(value: str) -> str:
    """Reduce accented Latin letters to their base letters.

    >>> transliterate("Łódź")
    'Lodz'
    """
    decomposed = unicodedata.normalize("NFKD", value.translate(TRANSLITERATIONS))
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_text(value: str) -> str:
    """Transliterate, case-fold and collapse whitespace.

    >>> normalize_text("  Søren   ØRSTED ")
    'soren orsted'
    """
    return " ".join(transliterate(value).casefold().split())


def tokenize(value: str) -> List[str]:
    """Whitespace tokens of an already normalized value."""
    return value.split()
