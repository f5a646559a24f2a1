"""
Evaluation Layer - Lexical Similarity Scoring

Submodules:
    tokenizer.py  → Text normalization
    similarity.py → rouge1, bleu1, combined (pure functions)
    evaluator.py  → Evaluation request boundary

Dependency Rule:
    This layer depends on: core
    This layer is used by: pipeline (orchestrator)
"""

from soap_evaluator.evaluation.tokenizer import tokenize
from soap_evaluator.evaluation.similarity import bleu1, combined, rouge1, score_pair
from soap_evaluator.evaluation.evaluator import NoteEvaluator

__all__ = [
    "NoteEvaluator",
    "bleu1",
    "combined",
    "rouge1",
    "score_pair",
    "tokenize",
]
