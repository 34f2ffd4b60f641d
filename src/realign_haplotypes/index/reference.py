"""
Reference sequence table and k-mer index for RealignHaplotypes.
Places candidate haplotypes on the reference genome.
"""

import logging
from collections import defaultdict
from typing import Dict, Iterator, List, Optional, Tuple

from Bio.Seq import reverse_complement

from src.realign_haplotypes.core.models import CandidateAlignment, SequenceRecord
from src.realign_haplotypes.utils.aligners import (
    aligned_span,
    build_local_aligner,
    build_semiglobal_aligner,
    count_alignment_events,
    first_alignment,
    reference_window
)

logger = logging.getLogger(__name__)

class ReferenceTable:
    """
    Ordered collection of reference contigs, addressed by position in the table.
    """

    def __init__(self, records: List[SequenceRecord]):
        self.records = [SequenceRecord(r.id, r.seq.upper()) for r in records]

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[SequenceRecord]:
        return iter(self.records)

    def get_read(self, reference_id: int) -> SequenceRecord:
        return self.records[reference_id]

class ReferenceIndex:
    """
    K-mer index over a ReferenceTable.

    :param reference_table: The contigs to index.
    :param k: Seed length.
    :param max_kmer_occurrences: Seeds occurring more often than this are ignored as repetitive.
    :param max_events: Maximum mismatches plus indels for a kept k-mer alignment.
    :param max_diff_to_best: Maximum event difference to the best alignment of the haplotype.
    :param min_local_score_fraction: Minimum local score, relative to haplotype length,
        for the exhaustive aligner.
    """

    def __init__(
        self,
        reference_table: ReferenceTable,
        k: int = 31,
        max_kmer_occurrences: int = 4,
        max_events: int = 8,
        max_diff_to_best: int = 10,
        min_local_score_fraction: float = 0.5
    ):
        self.reference_table = reference_table
        self.k = k
        self.max_kmer_occurrences = max_kmer_occurrences
        self.max_events = max_events
        self.max_diff_to_best = max_diff_to_best
        self.min_local_score_fraction = min_local_score_fraction
        self.kmer_index: Dict[str, List[Tuple[int, int]]] = defaultdict(list)

        for reference_id, record in enumerate(reference_table):
            seq = record.seq
            for offset in range(len(seq) - k + 1):
                self.kmer_index[seq[offset:offset + k]].append((reference_id, offset))

        logger.debug(f"Indexed {len(self.kmer_index)} distinct {k}-mers over {len(reference_table)} contigs")

    def _candidate_windows(self, query: str) -> List[Tuple[int, int, int]]:
        """
        Seed the query against the reference and return padded windows (reference_id, start, end).
        Seeds on nearby diagonals are clustered into one window.
        """
        diagonals = set()
        for i in range(len(query) - self.k + 1):
            hits = self.kmer_index.get(query[i:i + self.k])
            if not hits or len(hits) > self.max_kmer_occurrences:
                continue
            for reference_id, offset in hits:
                diagonals.add((reference_id, offset - i))

        buffer = max(20, len(query) // 5)
        windows = []
        cluster: Optional[List[int]] = None
        for reference_id, diagonal in sorted(diagonals):
            if cluster and cluster[0] == reference_id and diagonal - cluster[2] <= buffer:
                cluster[2] = diagonal
                continue
            if cluster:
                windows.append(tuple(cluster))
            cluster = [reference_id, diagonal, diagonal]
        if cluster:
            windows.append(tuple(cluster))

        out = []
        for reference_id, low, high in windows:
            length = len(self.reference_table.get_read(reference_id).seq)
            window = reference_window(length, low, high + len(query), buffer)
            if window:
                out.append((reference_id, window[0], window[1]))
        return out

    def align_haplotype_kmer(self, haplotype: str) -> List[CandidateAlignment]:
        """
        Align a haplotype to the reference using shared k-mers to find candidate windows,
        on both strands. Only near-best alignments with few edit events are returned.

        :param haplotype: Haplotype sequence.
        :return: List of CandidateAlignment objects.
        """
        haplotype = haplotype.upper()
        if len(haplotype) < self.k:
            return []

        aligner = build_semiglobal_aligner()
        scored: List[Tuple[CandidateAlignment, int]] = []
        for is_rc in (False, True):
            query = reverse_complement(haplotype) if is_rc else haplotype
            for reference_id, window_start, window_end in self._candidate_windows(query):
                target = self.reference_table.get_read(reference_id).seq[window_start:window_end]
                alignment = first_alignment(aligner, target, query)
                if alignment is None:
                    continue
                t_start, t_end, _, _ = aligned_span(alignment)
                events = count_alignment_events(alignment, target, query)
                candidate = CandidateAlignment(
                    reference_id=reference_id,
                    position=window_start + t_start,
                    is_rc=is_rc,
                    score=int(alignment.score),
                    length=t_end - t_start
                )
                scored.append((candidate, events))

        if not scored:
            return []

        min_events = min(events for _, events in scored)
        return [
            candidate for candidate, events in scored
            if events <= self.max_events and events - min_events <= self.max_diff_to_best
        ]

    def align_haplotype_exhaustive(self, haplotype: str) -> List[CandidateAlignment]:
        """
        Local alignment of the haplotype against every contig on both strands.
        Slower than the k-mer search but does not depend on exact seed matches.

        :param haplotype: Haplotype sequence.
        :return: List of CandidateAlignment objects, at most one per contig and strand.
        """
        haplotype = haplotype.upper()
        aligner = build_local_aligner(match=1.0, mismatch=-3.0, gap_open=-5.0, gap_extend=-2.0)
        min_score = self.min_local_score_fraction * len(haplotype)

        out = []
        for reference_id, record in enumerate(self.reference_table):
            for is_rc in (False, True):
                query = reverse_complement(haplotype) if is_rc else haplotype
                alignment = first_alignment(aligner, record.seq, query)
                if alignment is None or alignment.score < min_score:
                    continue
                t_start, t_end, _, _ = aligned_span(alignment)
                out.append(CandidateAlignment(
                    reference_id=reference_id,
                    position=t_start,
                    is_rc=is_rc,
                    score=int(alignment.score),
                    length=t_end - t_start
                ))
        return out
