"""Text normalisation and similarity scoring.

Pure functions shared by the experience cache (plan reuse) and the app
directory (app-name resolution).

* ``normalize`` lowercases, strips everything outside ``[a-z0-9]`` and
  whitespace, and collapses runs of whitespace.
* ``similarity`` is the Jaccard index over the word sets of two
  normalised strings.
* ``lcs_ratio`` is a character-level longest-common-subsequence ratio,
  better suited to short labels such as app names.

Typical usage::

    from pocket_agent.core.text_similarity import similarity

    similarity("Send message to John", "send message to jane")  # 0.6
"""

from __future__ import annotations

import re

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize(text: str) -> str:
    """Lowercase *text*, drop punctuation and collapse whitespace."""
    lowered = _NON_ALNUM.sub("", text.lower())
    return _WHITESPACE.sub(" ", lowered).strip()


def tokens(text: str) -> set[str]:
    """Return the set of words in ``normalize(text)``."""
    normalized = normalize(text)
    if not normalized:
        return set()
    return set(normalized.split(" "))


def similarity(a: str, b: str) -> float:
    """Jaccard similarity of the word sets of *a* and *b*.

    Returns:
        A value in ``[0, 1]``.  ``0.0`` when either side normalises to
        the empty string.
    """
    words_a = tokens(a)
    words_b = tokens(b)
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


def lcs_length(a: str, b: str) -> int:
    """Length of the longest common subsequence of *a* and *b*."""
    if not a or not b:
        return 0
    previous = [0] * (len(b) + 1)
    for ch_a in a:
        current = [0] * (len(b) + 1)
        for j, ch_b in enumerate(b, start=1):
            if ch_a == ch_b:
                current[j] = previous[j - 1] + 1
            else:
                current[j] = max(previous[j], current[j - 1])
        previous = current
    return previous[-1]


def lcs_ratio(a: str, b: str) -> float:
    """``2 * LCS(a, b) / (len(a) + len(b))``, 0.0 if either is empty."""
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    return 2.0 * lcs_length(a, b) / (len(a) + len(b))
