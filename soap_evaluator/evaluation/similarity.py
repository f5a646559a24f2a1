"""
Similarity Scorer - ROUGE-1, BLEU-1 and Combined Score

Pure functions comparing a candidate note with a reference note at the
unigram level. No side effects; identical inputs always give identical
floats, so results are memoized per (reference, candidate) pair.

Metrics:
    rouge1   → F1 of clipped unigram overlap (rouge_score, no stemming)
    bleu1    → clipped unigram precision × brevity penalty
    combined → arithmetic mean of the two
"""

import math
from collections import Counter
from functools import lru_cache
from typing import Tuple

from rouge_score import rouge_scorer

from soap_evaluator.evaluation.tokenizer import tokenize


# Default tokenizer lowercases and splits on non-[a-z0-9], same as tokenize()
_ROUGE_SCORER = rouge_scorer.RougeScorer(["rouge1"], use_stemmer=False)


# =============================================================================
# STAGE 1: ROUGE-1
# =============================================================================


def rouge1(reference: str, candidate: str) -> float:
    """
    Unigram overlap F1 between reference and candidate.

    overlap = Σ min(ref_count, cand_count); P = overlap / |candidate|,
    R = overlap / |reference|, F1 = 2PR / (P + R).

    Returns 0.0 when either side tokenizes to nothing or nothing overlaps.
    """
    return _ROUGE_SCORER.score(reference, candidate)["rouge1"].fmeasure


# =============================================================================
# STAGE 2: BLEU-1
# =============================================================================


def bleu1(reference: str, candidate: str) -> float:
    """
    Clipped unigram precision scaled by the brevity penalty.

    Algorithm:
        1. Walk candidate tokens in order, consuming a mutable reference
           multiset; a token matches only while its reference count is > 0
        2. precision = matches / |candidate|
        3. penalty = exp(min(0, 1 - |reference| / |candidate|))

    Returns 0.0 when either side tokenizes to nothing.

    Example:
        >>> bleu1("the cat sat", "the the the")  # one match, not three
        0.3333333333333333
    """
    ref_tokens = tokenize(reference)
    cand_tokens = tokenize(candidate)
    if not ref_tokens or not cand_tokens:
        return 0.0

    remaining = Counter(ref_tokens)
    matches = 0
    for token in cand_tokens:
        if remaining[token] > 0:
            matches += 1
            remaining[token] -= 1

    precision = matches / len(cand_tokens)
    brevity_penalty = math.exp(min(0.0, 1 - len(ref_tokens) / len(cand_tokens)))
    return brevity_penalty * precision


# =============================================================================
# STAGE 3: COMBINED SCORE
# =============================================================================


def combined(rouge1_score: float, bleu1_score: float) -> float:
    """Arithmetic mean of ROUGE-1 and BLEU-1."""
    return (rouge1_score + bleu1_score) / 2


@lru_cache(maxsize=256)
def score_pair(reference: str, candidate: str) -> Tuple[float, float, float]:
    """(rouge1, bleu1, combined) for one pair, memoized."""
    r1 = rouge1(reference, candidate)
    b1 = bleu1(reference, candidate)
    return r1, b1, combined(r1, b1)
