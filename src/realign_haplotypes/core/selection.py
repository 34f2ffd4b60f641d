"""
Best reference placement selection for RealignHaplotypes.
Scores each candidate placement of a haplotype set by how well the mates of the
variant reads align to the reference flanking that placement.
"""

import logging
from typing import List, Optional

from src.realign_haplotypes.core.alignment import (
    align_reads_locally,
    coalesce_alignments,
    make_flanking_haplotypes
)
from src.realign_haplotypes.core.models import ReturnCode, SelectionResult, SequenceRecord
from src.realign_haplotypes.core.parameters import SelectionPolicy

logger = logging.getLogger(__name__)

def mate_score_fraction(region: str, mates: List[SequenceRecord], rc_mates: List[SequenceRecord]) -> Optional[float]:
    """
    Average per-base local alignment score of the mates against a region.

    :return: Mean of score / (query_end - query_start), or None if no mate aligned.
    """
    local_alignments = align_reads_locally(region, mates) + align_reads_locally(region, rc_mates)

    fractions = []
    for alignment in local_alignments:
        aligned_length = alignment.query_end - alignment.query_start
        if aligned_length <= 0:
            continue
        fractions.append(alignment.score / aligned_length)

    if not fractions:
        return None
    return sum(fractions) / len(fractions)

def compute_best_alignment(
    haplotypes: List[str],
    variant_mates: List[SequenceRecord],
    variant_rc_mates: List[SequenceRecord],
    reference_index,
    reference_table,
    policy: Optional[SelectionPolicy] = None
) -> SelectionResult:
    """
    Choose the reference placement of a haplotype set best supported by the variant read mates.

    :param haplotypes: Haplotypes of the candidate.
    :param variant_mates: Mates of the forward strand variant reads.
    :param variant_rc_mates: Mates of the reverse strand variant reads.
    :param reference_index: ReferenceIndex providing the exhaustive aligner.
    :param reference_table: ReferenceTable holding the contigs.
    :param policy: SelectionPolicy; score thresholds only apply when enforce_thresholds is set.
    :return: SelectionResult with the ReturnCode and, on OK, the chosen alignment.
    """
    policy = policy or SelectionPolicy()

    if len(variant_mates) + len(variant_rc_mates) > policy.max_mate_depth:
        return SelectionResult(code=ReturnCode.OVER_DEPTH)

    alignments = []
    for haplotype in haplotypes:
        alignments.extend(reference_index.align_haplotype_exhaustive(haplotype))
    candidates = coalesce_alignments(alignments)

    if not candidates:
        return SelectionResult(code=ReturnCode.NO_ALIGNMENT)

    best_candidate = -1
    best_score = 0.0
    second_best = 0.0
    candidate_scores = {}
    for i, candidate in enumerate(candidates):
        reference_flanking: List[str] = []
        reference_haplotypes: List[str] = []
        make_flanking_haplotypes(candidate, reference_table, policy.flank_size, haplotypes,
                                 reference_flanking, reference_haplotypes)
        if not reference_flanking:
            continue

        score = mate_score_fraction(reference_flanking[0], variant_mates, variant_rc_mates)
        if score is None:
            continue
        candidate_scores[i] = score
        logger.debug(f"Alignment {i} mate-score: {score:.4f}")

        if score > best_score:
            second_best = best_score
            best_score = score
            best_candidate = i
        elif score > second_best:
            second_best = score

    if best_candidate == -1:
        return SelectionResult(code=ReturnCode.NO_ALIGNMENT, candidate_scores=candidate_scores)

    result = SelectionResult(
        code=ReturnCode.OK,
        alignment=candidates[best_candidate],
        best_score=best_score,
        second_best_score=second_best,
        candidate_scores=candidate_scores
    )

    if policy.enforce_thresholds:
        if best_score < policy.min_score_fraction:
            result.code = ReturnCode.POOR_ALIGNMENT
        elif best_score - second_best < policy.min_margin:
            result.code = ReturnCode.AMBIGUOUS_ALIGNMENT
    return result
