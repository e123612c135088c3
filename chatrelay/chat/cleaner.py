"""
Text normalizer for model output.

Cleaning is an ordered list of named rules, each a plain ``str -> str``
function. ``clean`` runs the whole list until the text stops changing, so
``clean(clean(x)) == clean(x)`` holds even when one rule exposes work for an
earlier one (e.g. dropping a stray byte that completes a ``<s>`` tag).
"""

import re
from typing import Callable, List, Tuple

ACCENTED = "áéíóúÁÉÍÓÚñÑüÜ"
ALLOWED_EXTRA = ACCENTED + "¡¿"

_DISALLOWED = re.compile(r"[^\x20-\x7e\n\r\t" + ALLOWED_EXTRA + r"]")

# Instruction delimiters and reasoning blocks leaked by instruct models
_CONTROL_MARKUP = [
    re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE),
    re.compile(r"\[/?INST\]", re.IGNORECASE),
    re.compile(r"<<\s*/?\s*SYS\s*>>", re.IGNORECASE),
    re.compile(r"</?s>"),
    re.compile(r"<\|.*?\|>"),
]

# Runs only: a lone newline or tab survives
_WHITESPACE = re.compile(r"\s{2,}")
_MISSING_SPACE = re.compile(r"([.!?;:,])(?=[A-Z¡¿ÁÉÍÓÚÑ])")

# A consonant standing alone is never a Spanish word ("y" is), so it is a
# word that got split at a chunk boundary: "p royecto" -> "proyecto"
_SPLIT_LETTER = re.compile(
    r"(?<![A-Za-z" + ACCENTED + r"])([b-df-hj-np-tv-xz])\s+(?=[a-z" + ACCENTED + r"])"
)


def filter_charset(text: str) -> str:
    return _DISALLOWED.sub("", text)


def strip_control_markup(text: str) -> str:
    previous = None
    while previous != text:
        previous = text
        for pattern in _CONTROL_MARKUP:
            text = pattern.sub("", text)
    return text


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text)


def space_after_punctuation(text: str) -> str:
    return _MISSING_SPACE.sub(r"\1 ", text)


def join_split_words(text: str) -> str:
    return _SPLIT_LETTER.sub(r"\1", text)


RULES: List[Tuple[str, Callable[[str], str]]] = [
    ("filter_charset", filter_charset),
    ("strip_control_markup", strip_control_markup),
    ("collapse_whitespace", collapse_whitespace),
    ("space_after_punctuation", space_after_punctuation),
    ("join_split_words", join_split_words),
]


def apply_rules(text: str) -> str:
    for _, rule in RULES:
        text = rule(text)
    return text


def clean(raw_chunk: str) -> str:
    """Normalize a chunk of model output. Pure and idempotent.

    Nested split markup ("<t <t hink>..") unwraps one level per pass, so
    there is no pass limit. Only ``space_after_punctuation`` adds characters,
    and at most once per punctuation mark, so the loop ends.
    """
    text = raw_chunk
    while True:
        cleaned = apply_rules(text)
        if cleaned == text:
            return text
        text = cleaned
