# normalizer.py
"""Canonical lookup keys for ingredient names.

"Thịt Ba Chỉ", "thit ba chi" and "THỊT  BA-CHỈ" all map to "thit-ba-chi".
The key is the only thing the cache tiers compare, so every Vietnamese vowel
with every tone mark has to be in the substitution table.
"""
import re
import unicodedata

_VOWEL_FAMILIES = {
    'a': 'àáảãạăằắẳẵặâầấẩẫậ',
    'e': 'èéẻẽẹêềếểễệ',
    'i': 'ìíỉĩị',
    'o': 'òóỏõọôồốổỗộơờớởỡợ',
    'u': 'ùúủũụưừứửữự',
    'y': 'ỳýỷỹỵ',
    'd': 'đ',
}

VIETNAMESE_ACCENTS = str.maketrans({
    accented: plain
    for plain, family in _VOWEL_FAMILIES.items()
    for accented in family
})

_WHITESPACE = re.compile(r"\s+")
_DISALLOWED = re.compile(r"[^a-z0-9-]")
_HYPHENS = re.compile(r"-+")


def _strip_other_marks(text: str) -> str:
    # Latin letters outside the Vietnamese table (ç, ñ, ü ...) lose their marks too
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize(text: str) -> str:
    """
    Normalize an ingredient name into its lookup key.

    Args:
        text: Ingredient name as typed by a user

    Returns:
        Lowercase, accent-free, hyphen-separated key (may be empty)
    """
    if not text:
        return ""

    # Decomposed input (base letter + combining tone mark) must hit the table
    normalized = unicodedata.normalize("NFC", text).lower()
    normalized = normalized.translate(VIETNAMESE_ACCENTS)
    normalized = _strip_other_marks(normalized)
    normalized = _WHITESPACE.sub("-", normalized)
    normalized = _DISALLOWED.sub("", normalized)
    normalized = _HYPHENS.sub("-", normalized)
    return normalized.strip("-")


def english_key(name: str) -> str:
    """Reverse key for a translated name, e.g. "Pork Belly" -> "pork-belly"."""
    return normalize(name)
