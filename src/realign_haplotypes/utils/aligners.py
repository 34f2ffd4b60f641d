"""
Pairwise aligner helpers shared by the reference index and the read realignment code.
"""

from typing import Optional, Tuple

from Bio.Align import PairwiseAligner

def build_semiglobal_aligner() -> PairwiseAligner:
    """
    Global alignment of the whole query where the target may overhang it for free,
    used to place a haplotype inside a reference window.
    """
    aligner = PairwiseAligner()
    aligner.mode = "global"
    aligner.match_score = 2.0
    aligner.mismatch_score = -4.0
    aligner.open_gap_score = -5.0
    aligner.extend_gap_score = -2.0
    # Deletions at either end are target bases outside the placement
    aligner.end_deletion_score = 0.0
    return aligner

def build_local_aligner(match: float = 1.0, mismatch: float = -1.0,
                        gap_open: float = -2.0, gap_extend: float = -1.0) -> PairwiseAligner:
    aligner = PairwiseAligner()
    aligner.mode = "local"
    aligner.match_score = match
    aligner.mismatch_score = mismatch
    aligner.open_gap_score = gap_open
    aligner.extend_gap_score = gap_extend
    return aligner

def first_alignment(aligner: PairwiseAligner, target: str, query: str):
    """
    Return the first optimal alignment of query against target, or None.

    :param aligner: Configured PairwiseAligner.
    :param target: Target (reference) sequence.
    :param query: Query sequence.
    :return: A Bio.Align.Alignment or None when nothing aligns.
    """
    if not target or not query:
        return None
    alignments = aligner.align(target, query)
    try:
        alignment = alignments[0]
    except IndexError:
        return None
    if aligner.mode == "local" and alignment.score <= 0:
        return None
    return alignment

def aligned_span(alignment) -> Tuple[int, int, int, int]:
    """
    Leading and trailing target-only blocks (free end gaps) are excluded.

    :return: Tuple (target_start, target_end, query_start, query_end), ends exclusive.
    """
    coords = alignment.coordinates
    first = 0
    last = coords.shape[1] - 1
    while first < last - 1 and coords[1][first + 1] == coords[1][first]:
        first += 1
    while last > first + 1 and coords[1][last] == coords[1][last - 1]:
        last -= 1
    return int(coords[0][first]), int(coords[0][last]), int(coords[1][first]), int(coords[1][last])

def count_alignment_events(alignment, target: str, query: str) -> int:
    """
    Count mismatches plus indel runs in an alignment.
    A run of consecutive inserted or deleted bases is one event.
    Unaligned target ends are not counted.
    """
    coords = alignment.coordinates
    num_blocks = coords.shape[1] - 1
    events = 0
    for i in range(num_blocks):
        t0, t1 = int(coords[0][i]), int(coords[0][i + 1])
        q0, q1 = int(coords[1][i]), int(coords[1][i + 1])
        if q1 == q0 and i in (0, num_blocks - 1):
            continue
        if t1 > t0 and q1 > q0:
            events += sum(1 for a, b in zip(target[t0:t1], query[q0:q1]) if a != b)
        elif t1 > t0 or q1 > q0:
            events += 1
    return events

def reference_window(length: int, start: int, end: int, buffer: int) -> Optional[Tuple[int, int]]:
    """
    Pad [start, end) by buffer on both sides and clamp to [0, length).
    """
    window_start = max(0, start - buffer)
    window_end = min(length, end + buffer)
    if window_end <= window_start:
        return None
    return window_start, window_end
