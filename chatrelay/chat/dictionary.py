import logging
import re
import unicodedata
from typing import Dict, Iterable, List, Optional, Set

logger = logging.getLogger(__name__)

MATCH_THRESHOLD = 0.3

_NON_WORD = re.compile(r"\W+", re.ASCII)


def tokenize(text: str) -> List[str]:
    """Lowercase, drop diacritics and split on anything that isn't [A-Za-z0-9_]."""
    decomposed = unicodedata.normalize("NFD", text.lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return [token for token in _NON_WORD.split(stripped) if token]


def jaccard_similarity(a: Set[str], b: Set[str]) -> float:
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


class DictionaryMatcher:
    """Answers prompts from a small fixed Q/A table."""

    def __init__(self, entries: Iterable[Dict[str, str]], threshold: float = MATCH_THRESHOLD):
        self.threshold = threshold
        self.entries = [
            (set(tokenize(entry["question"])), entry["answer"])
            for entry in entries
        ]

    def match(self, prompt: str) -> Optional[str]:
        prompt_tokens = set(tokenize(prompt))
        best_score = 0.0
        best_answer = None

        # Strict comparison keeps the first of equally good entries
        for question_tokens, answer in self.entries:
            score = jaccard_similarity(prompt_tokens, question_tokens)
            if score > best_score:
                best_score = score
                best_answer = answer

        if best_score > self.threshold:
            logger.debug("Dictionary hit (%.2f) for %r", best_score, prompt)
            return best_answer
        return None
