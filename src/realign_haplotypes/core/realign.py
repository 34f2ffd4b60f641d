"""
Two-sample haplotype realignment for RealignHaplotypes.
Aligns a haplotype set to the reference, extracts supporting reads from the base and
variant samples, and runs the realignment engine on each sample in turn.
"""

import logging
from typing import List, Optional, TextIO

from Bio.Seq import reverse_complement

from src.realign_haplotypes.core.alignment import (
    coalesce_alignments,
    make_flanking_haplotypes,
    reconcile_reference_mappings
)
from src.realign_haplotypes.core.models import (
    CandidateAlignment,
    EngineRead,
    HaplotypeSet,
    ReadSet,
    RealignmentOutcome,
    RealignmentResult,
    RealignmentWindow,
    ReturnCode,
    SequenceRecord
)
from src.realign_haplotypes.core.parameters import RealignContext, RealignParameters
from src.realign_haplotypes.core.reads import OverDepthError, extract_haplotype_reads
from src.realign_haplotypes.engine.base import RealignmentEngine, RealignmentEngineFactory
from src.realign_haplotypes.engine.likelihood import HaplotypeLikelihoodEngine

logger = logging.getLogger(__name__)

READ_SAMPLE_TAG = "SAMPLE"
BASE_SAMPLE = 0
VARIANT_SAMPLE = 1

def find_candidate_alignments(haplotypes: List[str], reference_index) -> List[CandidateAlignment]:
    """
    Align every haplotype with the reference k-mer aligner and coalesce the placements.
    """
    alignments = []
    for haplotype in haplotypes:
        alignments.extend(reference_index.align_haplotype_kmer(haplotype))
    return coalesce_alignments(alignments)

def extract_sample_reads(haplotypes: List[str], sample_index, parameters: RealignParameters) -> ReadSet:
    """
    Extract the forward and reverse strand reads (with mates) of one sample.

    :raises OverDepthError: If either extraction exceeds the depth limits.
    """
    k = parameters.extraction_kmer()
    read_set = ReadSet()
    read_set.forward, read_set.forward_mates = extract_haplotype_reads(
        haplotypes, sample_index, k, False, parameters.max_reads, parameters.max_kmer_occurrences
    )
    read_set.reverse, read_set.reverse_mates = extract_haplotype_reads(
        haplotypes, sample_index, k, True, parameters.max_reads, parameters.max_kmer_occurrences
    )
    return read_set

def _engine_read(record: SequenceRecord, is_forward: bool, flip: bool, parameters: RealignParameters) -> EngineRead:
    return EngineRead(
        id=record.id,
        sequence=reverse_complement(record.seq) if flip else record.seq,
        sample=READ_SAMPLE_TAG,
        mapping_quality=parameters.mapping_quality,
        base_quality=parameters.base_quality,
        is_forward=is_forward
    )

def build_engine_reads(read_set: ReadSet, parameters: RealignParameters) -> List[EngineRead]:
    """
    Orient and tag the reads of one sample for the engine. Mates go after the reads.

    Reverse strand reads are reverse complemented onto the haplotype strand. When mate
    pairs are realigned, forward-read mates are reverse complemented while reverse-read
    mates are kept as sequenced.
    """
    reads = [_engine_read(r, True, False, parameters) for r in read_set.forward]
    reads.extend(_engine_read(r, False, True, parameters) for r in read_set.reverse)

    if parameters.realign_mate_pairs:
        logger.debug("Adding read mates")
        reads.extend(_engine_read(r, True, True, parameters) for r in read_set.forward_mates)
        reads.extend(_engine_read(r, False, False, parameters) for r in read_set.reverse_mates)
    return reads

def run_realignment_pair(
    haplotype_set: HaplotypeSet,
    context: RealignContext,
    base_out: TextIO,
    variant_out: TextIO
) -> RealignmentOutcome:
    """
    Evaluate one haplotype set against the base and variant samples.

    Early exits, in order: too many distinct placements (AMBIGUOUS_ALIGNMENT), too many
    reads (OVER_DEPTH), fewer than two distinct flanked haplotypes or an empty reference
    haplotype (NO_ALIGNMENT). An engine failure is logged and returned as EXCEPTION;
    the caller decides whether to stop the batch.

    :param haplotype_set: Base and variant haplotypes of the candidate.
    :param context: Shared reference/sample indices, parameters and engine factory.
    :param base_out: Stream for the base sample verdicts.
    :param variant_out: Stream for the variant sample verdicts.
    :return: RealignmentOutcome with the ReturnCode and counts.
    """
    parameters = context.parameters
    outcome = RealignmentOutcome(variant_id=haplotype_set.variant_id, code=ReturnCode.OK)
    in_haplotypes = haplotype_set.haplotypes

    candidate_alignments = find_candidate_alignments(in_haplotypes, context.reference_index)
    outcome.num_alignments = len(candidate_alignments)
    logger.debug(f"{haplotype_set.variant_id}: found {len(candidate_alignments)} alignments")
    if len(candidate_alignments) > parameters.max_alignments:
        outcome.code = ReturnCode.AMBIGUOUS_ALIGNMENT
        return outcome

    flanking = parameters.flanking_size()
    flanking_haplotypes: List[str] = []
    candidate_haplotypes: List[str] = []
    for alignment in candidate_alignments:
        # A placement too close to a contig end is skipped and the others are kept
        make_flanking_haplotypes(
            alignment, context.reference_table, flanking, in_haplotypes,
            flanking_haplotypes, candidate_haplotypes
        )
    candidate_haplotypes = sorted(set(candidate_haplotypes))

    base_reads = ReadSet()
    try:
        if not parameters.reference_mode:
            base_reads = extract_sample_reads(candidate_haplotypes, context.base_index, parameters)
        variant_reads = extract_sample_reads(candidate_haplotypes, context.variant_index, parameters)
    except OverDepthError as e:
        logger.debug(f"{haplotype_set.variant_id}: {e}")
        outcome.code = ReturnCode.OVER_DEPTH
        return outcome

    total_reads = base_reads.total() + variant_reads.total()
    outcome.num_reads = total_reads
    if total_reads > parameters.max_reads:
        outcome.code = ReturnCode.OVER_DEPTH
        return outcome

    unique_flanking = sorted(set(flanking_haplotypes))
    outcome.num_haplotypes = len(unique_flanking)
    if len(unique_flanking) < 2 or not flanking_haplotypes[0]:
        outcome.code = ReturnCode.NO_ALIGNMENT
        return outcome

    logger.debug(f"{haplotype_set.variant_id}: passing {len(unique_flanking)} haplotypes and {total_reads} reads to realignment")

    window = RealignmentWindow(
        haplotypes=tuple(unique_flanking),
        reference_mappings=reconcile_reference_mappings(candidate_alignments, context.reference_table, flanking)
    )
    engine_factory: RealignmentEngineFactory = context.engine_factory or HaplotypeLikelihoodEngine

    previous_result: Optional[RealignmentResult] = None
    start = VARIANT_SAMPLE if parameters.reference_mode else BASE_SAMPLE
    for sample in range(start, VARIANT_SAMPLE + 1):
        read_set = base_reads if sample == BASE_SAMPLE else variant_reads
        engine_reads = build_engine_reads(read_set, parameters)
        result = RealignmentResult()
        try:
            engine: RealignmentEngine = engine_factory(window, engine_reads, parameters)
            engine.run(parameters.model, base_out if sample == BASE_SAMPLE else variant_out,
                       haplotype_set.variant_id, result, previous_result)
        except Exception as e:
            logger.error(f"Realignment engine failed for {haplotype_set.variant_id}: {e}")
            outcome.code = ReturnCode.EXCEPTION
            outcome.message = str(e)
            return outcome

        base_out.flush()
        variant_out.flush()

        if sample == BASE_SAMPLE:
            previous_result = result

    return outcome
