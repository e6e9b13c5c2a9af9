"""
Name Normalizer - Standardizes subject (player/team) names for merging

Rules:
- Lowercase, accents stripped
- Punctuation dropped, hyphens/underscores become spaces
- Generational suffix removed: jr, sr, ii, iii, iv, v
- Whitespace collapsed
"""

import re
import unicodedata

GENERATIONAL_SUFFIXES = ("jr", "sr", "ii", "iii", "iv", "v")

_SUFFIX_RE = re.compile(r"\s+(?:%s)\.?$" % "|".join(GENERATIONAL_SUFFIXES))
_PUNCT_RE = re.compile(r"[^\w\s\-]")


def remove_accents(text: str) -> str:
    """Strip combining marks after NFD decomposition ("Dončić" -> "Doncic")."""
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")


def normalize_subject_name(raw_name: str) -> str:
    """
    Normalize a subject name into the key used for merging and exposure caps.

    "Luka Dončić" -> "luka doncic", "Gary Payton Jr." -> "gary payton",
    "Shai Gilgeous-Alexander" -> "shai gilgeous alexander".

    Returns:
        Normalized name string ("" for empty input)
    """
    if not raw_name:
        return ""

    key = remove_accents(raw_name.strip().lower())
    key = _PUNCT_RE.sub("", key)
    key = " ".join(key.replace("-", " ").replace("_", " ").split())
    return _SUFFIX_RE.sub("", key).strip()


def subjects_match(name1: str, name2: str) -> bool:
    """True when two raw names normalize to the same subject key."""
    key1 = normalize_subject_name(name1)
    return bool(key1) and key1 == normalize_subject_name(name2)
