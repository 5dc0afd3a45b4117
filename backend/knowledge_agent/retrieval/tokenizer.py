"""
Tokenizer utilities for BM25 indexing and querying.

This module is the single source of truth for turning text into index tokens.
The same function MUST be used for record text at write time and for query
text at search time, otherwise cached term frequencies and query tokens drift
apart.

Two modes are available:
- ``ascii`` (default): lower-case, keep only ``[a-z0-9]``, split on whitespace.
- ``multilingual``: same normalisation for Latin text, with CJK runs
  segmented by jieba instead of being discarded.
"""

import re
from collections import Counter
from typing import Callable, Dict, Iterable, List

import jieba


Tokenizer = Callable[[str], List[str]]

_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9\s]")

# CJK Unicode ranges (characters only, not punctuation)
CJK_RANGES = [
    (0x4E00, 0x9FFF),    # CJK Unified Ideographs
    (0x3400, 0x4DBF),    # CJK Unified Ideographs Extension A
    (0x20000, 0x2A6DF),  # CJK Unified Ideographs Extension B
    (0xF900, 0xFAFF),    # CJK Compatibility Ideographs
]


def tokenize(text: str) -> List[str]:
    """
    Normalise text into index tokens.

    Examples:
        >>> tokenize("Hello, World!")
        ['hello', 'world']
        >>> tokenize("page-42 of 100")
        ['page', '42', 'of', '100']
    """
    if not text:
        return []
    return _NON_ALPHANUMERIC.sub(" ", text.lower()).split()


def _is_cjk_char(char: str) -> bool:
    code_point = ord(char)
    return any(start <= code_point <= end for start, end in CJK_RANGES)


def _tokenize_cjk(segment: str) -> List[str]:
    return [t.strip() for t in jieba.cut(segment, cut_all=False) if t.strip()]


def tokenize_multilingual(text: str) -> List[str]:
    """
    Tokenize text that may mix CJK and Latin scripts.

    Splits the input into runs of CJK / non-CJK characters. CJK runs are
    segmented with jieba, everything else goes through ``tokenize``.

    Examples:
        >>> tokenize_multilingual("Hello 你好世界")
        ['hello', '你好', '世界']
    """
    if not text or not text.strip():
        return []

    tokens: List[str] = []
    segment: List[str] = []
    segment_is_cjk = False

    for char in text:
        char_is_cjk = _is_cjk_char(char)
        if segment and char_is_cjk != segment_is_cjk:
            tokens.extend(_flush(segment, segment_is_cjk))
            segment = []
        segment.append(char)
        segment_is_cjk = char_is_cjk

    if segment:
        tokens.extend(_flush(segment, segment_is_cjk))
    return tokens


def _flush(segment: List[str], is_cjk: bool) -> List[str]:
    text = "".join(segment)
    return _tokenize_cjk(text) if is_cjk else tokenize(text)


TOKENIZER_MODES: Dict[str, Tokenizer] = {
    "ascii": tokenize,
    "multilingual": tokenize_multilingual,
}


def get_tokenizer(mode: str) -> Tokenizer:
    """Resolve a tokenizer mode name (see ``Settings.tokenizer_mode``)."""
    try:
        return TOKENIZER_MODES[mode.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown tokenizer mode {mode!r}; expected one of {sorted(TOKENIZER_MODES)}"
        ) from None


def term_frequencies(tokens: Iterable[str]) -> Dict[str, int]:
    """Count occurrences of each token."""
    return dict(Counter(tokens))


def document_length(term_frequency: Dict[str, int]) -> int:
    """Length of a document as seen by BM25: the sum of its token counts."""
    return sum(term_frequency.values())
