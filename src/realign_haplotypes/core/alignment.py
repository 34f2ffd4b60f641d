"""
Alignment handling for RealignHaplotypes.
Includes coalescing of candidate alignments, construction of reference-flanked haplotypes,
reconciliation of reference mappings and local realignment of reads.
"""

import logging
from typing import Dict, List, Tuple

from Bio.Seq import reverse_complement

from src.realign_haplotypes.core.models import (
    CandidateAlignment,
    LocalAlignment,
    ReferenceMapping,
    SequenceRecord
)
from src.realign_haplotypes.utils.aligners import aligned_span, build_local_aligner, first_alignment

logger = logging.getLogger(__name__)

# Weight given to every reference mapping handed to the realignment engine
REFERENCE_MAPPING_WEIGHT = 1000.0

def is_same_placement(head: CandidateAlignment, alignment: CandidateAlignment) -> bool:
    """
    Two alignments are the same placement when they share contig and strand and overlap
    by at least half of the shorter interval (or start at the same position).
    """
    if alignment.reference_id != head.reference_id or alignment.is_rc != head.is_rc:
        return False
    if alignment.position == head.position:
        return True
    overlap = min(head.end, alignment.end) - max(head.position, alignment.position)
    return overlap > 0 and 2 * overlap >= min(head.length, alignment.length)

def coalesce_alignments(alignments: List[CandidateAlignment]) -> List[CandidateAlignment]:
    """
    Remove duplicate placements from a list of candidate alignments.
    Each alignment is compared with the first member of the current group, so a chain of
    slightly overlapping placements (e.g. along a tandem repeat) stays separate. The
    best-scoring member of each group is kept (first in sorted order on ties).

    :param alignments: Candidate alignments in any order.
    :return: Deduplicated alignments sorted by contig, strand and position.
    """
    if not alignments:
        return []

    ordered = sorted(alignments, key=lambda a: (a.reference_id, a.is_rc, a.position, -a.score, a.length))

    groups: List[List[CandidateAlignment]] = [[ordered[0]]]
    for alignment in ordered[1:]:
        if is_same_placement(groups[-1][0], alignment):
            groups[-1].append(alignment)
        else:
            groups.append([alignment])

    coalesced = []
    for group in groups:
        best = group[0]
        for alignment in group[1:]:
            if alignment.score > best.score:
                best = alignment
        coalesced.append(best)

    if len(coalesced) < len(alignments):
        logger.debug(f"Coalesced {len(alignments)} candidate alignments into {len(coalesced)}")
    return coalesced

def extract_reference_substrings(
    alignment: CandidateAlignment,
    reference_table,
    flanking: int
) -> Tuple[str, str, str]:
    """
    Extract the aligned reference interval and up to `flanking` bases on either side.
    Flanks are truncated at contig boundaries.

    :param alignment: Candidate alignment.
    :param reference_table: ReferenceTable holding the contig.
    :param flanking: Requested flank length.
    :return: Tuple (upstream, defined, downstream) on the reference forward strand.
    """
    seq = reference_table.get_read(alignment.reference_id).seq
    start = max(0, alignment.position)
    end = min(len(seq), alignment.end)
    upstream_start = max(0, start - flanking)
    downstream_end = min(len(seq), end + flanking)
    return seq[upstream_start:start], seq[start:end], seq[end:downstream_end]

def make_flanking_haplotypes(
    alignment: CandidateAlignment,
    reference_table,
    flanking: int,
    haplotypes: List[str],
    out_flanking_haplotypes: List[str],
    out_haplotypes: List[str]
) -> bool:
    """
    Join the reference interval of an alignment, and each input haplotype, with reference flanks.
    The reference haplotype is appended first, then one entry per input haplotype.
    Bare (unflanked) sequences are appended to out_haplotypes for read extraction.

    :param alignment: Candidate alignment giving the reference placement.
    :param reference_table: ReferenceTable holding the contig.
    :param flanking: Flank length on each side.
    :param haplotypes: Input haplotypes, in their own orientation.
    :param out_flanking_haplotypes: Accumulator for flanked sequences.
    :param out_haplotypes: Accumulator for unflanked sequences.
    :return: False, with nothing appended, when the alignment lies too close to a contig boundary.
    """
    contig_length = len(reference_table.get_read(alignment.reference_id).seq)
    if alignment.position < 0 or alignment.end > contig_length:
        logger.debug(f"Alignment {alignment} lies outside its contig")
        return False

    upstream, defined, downstream = extract_reference_substrings(alignment, reference_table, flanking)
    if len(upstream) < flanking or len(downstream) < flanking:
        logger.debug(f"Alignment {alignment} is within {flanking}bp of a contig boundary")
        return False

    # Put the reference on the strand of the haplotypes
    if alignment.is_rc:
        upstream, defined, downstream = (
            reverse_complement(downstream),
            reverse_complement(defined),
            reverse_complement(upstream)
        )

    out_flanking_haplotypes.append(upstream + defined + downstream)
    out_haplotypes.append(defined)

    for haplotype in haplotypes:
        out_flanking_haplotypes.append(upstream + haplotype + downstream)
        out_haplotypes.append(haplotype)
    return True

def reconcile_reference_mappings(
    alignments: List[CandidateAlignment],
    reference_table,
    flanking: int
) -> Tuple[ReferenceMapping, ...]:
    """
    Build the canonical set of reference mappings for a list of candidate alignments.

    Mappings with equal (name, start, sequence, strand) are merged keeping the highest
    provisional score (alignment score plus both flanks). The merged set is returned in
    key order, every mapping carrying the fixed engine weight.

    :param alignments: Coalesced candidate alignments.
    :param reference_table: ReferenceTable holding the contigs.
    :param flanking: Flank length.
    :return: Tuple of ReferenceMapping objects sorted by key.
    """
    provisional: Dict[Tuple[str, int, str, bool], float] = {}
    for alignment in alignments:
        ref_name = reference_table.get_read(alignment.reference_id).id
        upstream, defined, downstream = extract_reference_substrings(alignment, reference_table, flanking)
        ref_seq = upstream + defined + downstream
        ref_start = alignment.position - len(upstream) + 1
        score = float(alignment.score + 2 * flanking)

        key = (ref_name, ref_start, ref_seq, alignment.is_rc)
        if key not in provisional or score > provisional[key]:
            provisional[key] = score

    mappings = tuple(
        ReferenceMapping(
            ref_name=ref_name,
            ref_seq=ref_seq,
            ref_start=ref_start,
            reference_alignment_score=REFERENCE_MAPPING_WEIGHT,
            is_rc=is_rc
        )
        for ref_name, ref_start, ref_seq, is_rc in sorted(provisional)
    )

    for i, mapping in enumerate(mappings):
        logger.debug(f"Reference mapping {i} {mapping.ref_name} start: {mapping.ref_start} "
                     f"end: {mapping.ref_end} score: {mapping.reference_alignment_score}")
    return mappings

def align_reads_locally(region: str, reads: List[SequenceRecord]) -> List[LocalAlignment]:
    """
    Locally align each read against a reference region.
    Reads that do not align are skipped.

    :param region: Reference sequence to align against.
    :param reads: Reads to align, as given (no reverse complementing).
    :return: List of LocalAlignment results.
    """
    aligner = build_local_aligner()
    results = []
    for read in reads:
        alignment = first_alignment(aligner, region, read.seq)
        if alignment is None:
            continue
        _, _, query_start, query_end = aligned_span(alignment)
        results.append(LocalAlignment(score=float(alignment.score), query_start=query_start, query_end=query_end))
    return results
