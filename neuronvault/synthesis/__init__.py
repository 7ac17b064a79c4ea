"""Weighted merge of several model answers into one response."""

from .merge import merge_weighted_responses
from .sentence_similarity import sentence_similarity, split_sentences
from .synthesis_engine import SynthesisEngine, WeightedResponseSet

__all__ = [
    "merge_weighted_responses",
    "sentence_similarity",
    "split_sentences",
    "SynthesisEngine",
    "WeightedResponseSet",
]
