"""
The pure weighted merge. It runs the same way inline or inside an executor
worker, so it takes only picklable arguments and touches no shared state.

Two answers:
- If the heavier one outweighs the other by more than `dominance_ratio`, it wins verbatim.
- Otherwise the sentences of both are pooled, near duplicates removed, and the
  rest joined with periods.

Three or more answers:
- The heaviest answer is the base.
- The next `candidate_count` answers contribute up to `max_points_per_candidate`
  sentences each that are not similar to anything in the base. These are
  appended as a bulleted "Further considerations" section.
"""

import logging
from typing import Mapping

from neuronvault.config import SynthesisControls
from neuronvault.synthesis.sentence_similarity import sentence_similarity, split_sentences

logger = logging.getLogger(__name__)

_TERMINAL_PUNCTUATION = (".", "!", "?")


def rank_by_weight(responses: Mapping[str, str], weights: Mapping[str, float]) -> list[tuple[str, str, float]]:
    """Heaviest first. Ties keep the order of `responses`. Missing weights count as 1.0."""
    entries = [(model_id, text, float(weights.get(model_id, 1.0))) for model_id, text in responses.items()]
    return sorted(entries, key=lambda entry: entry[2], reverse=True)


def _merge_two(ranked: list[tuple[str, str, float]], controls: SynthesisControls) -> str:
    (top_id, top_text, top_weight), (second_id, second_text, second_weight) = ranked
    if top_weight > controls.dominance_ratio * second_weight:
        logger.debug(f"{top_id!r} dominates {second_id!r} ({top_weight} vs {second_weight})")
        return top_text

    kept: list[str] = []
    for sentence in split_sentences(top_text, controls.min_sentence_length) + split_sentences(second_text, controls.min_sentence_length):
        if any(sentence_similarity(sentence, existing) >= controls.duplicate_similarity for existing in kept):
            continue
        kept.append(sentence)

    if not kept:
        # Nothing long enough to compare, keep the heavier answer as is.
        return top_text
    return ". ".join(kept) + "."


def _unique_points(candidate_text: str, reference_sentences: list[str], controls: SynthesisControls) -> list[str]:
    points: list[str] = []
    for sentence in split_sentences(candidate_text, controls.min_point_length):
        if all(sentence_similarity(sentence, reference) < controls.unique_similarity for reference in reference_sentences):
            points.append(sentence)
            if len(points) >= controls.max_points_per_candidate:
                break
    return points


def _merge_many(ranked: list[tuple[str, str, float]], controls: SynthesisControls) -> str:
    base_text = ranked[0][1]
    reference_sentences = split_sentences(base_text, controls.min_sentence_length)

    collected: list[str] = []
    for model_id, candidate_text, _ in ranked[1:1 + controls.candidate_count]:
        points = _unique_points(candidate_text, reference_sentences + collected, controls)
        logger.debug(f"{model_id!r} contributes {len(points)} unique points")
        collected.extend(points)

    if not collected:
        return base_text

    base = base_text.rstrip()
    if not base.endswith(_TERMINAL_PUNCTUATION):
        base += "."
    bullet_lines = "\n".join(f"• {point}." for point in collected)
    return f"{base}\n\n**{controls.section_label}:**\n{bullet_lines}"


def merge_weighted_responses(
    responses: Mapping[str, str],
    weights: Mapping[str, float],
    controls: SynthesisControls,
) -> str:
    if not responses:
        return ""
    ranked = rank_by_weight(responses, weights)
    if len(ranked) == 1:
        return ranked[0][1]
    if len(ranked) == 2:
        return _merge_two(ranked, controls)
    return _merge_many(ranked, controls)
