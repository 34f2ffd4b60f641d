"""
Read extraction for RealignHaplotypes.
Finds the reads of a sample that share a k-mer with any candidate haplotype, with their mates.
"""

import logging
from typing import List, Optional, Set, Tuple

from Bio.Seq import reverse_complement

from src.realign_haplotypes.core.models import SequenceRecord

logger = logging.getLogger(__name__)

class OverDepthError(Exception):
    """
    Raised when read extraction would exceed the configured depth limits.
    """

def haplotype_kmers(haplotypes: List[str], k: int, reverse: bool = False) -> Set[str]:
    """
    Collect the k-mers of every haplotype, reverse complemented when `reverse` is set.
    Haplotypes shorter than k contribute nothing.
    """
    kmers = set()
    for haplotype in haplotypes:
        haplotype = haplotype.upper()
        for i in range(len(haplotype) - k + 1):
            kmer = haplotype[i:i + k]
            kmers.add(reverse_complement(kmer) if reverse else kmer)
    return kmers

def extract_haplotype_reads(
    haplotypes: List[str],
    sample_index,
    k: int,
    reverse: bool,
    max_reads: int,
    max_kmer_occurrences: Optional[int] = None
) -> Tuple[List[SequenceRecord], List[SequenceRecord]]:
    """
    Extract the reads sharing at least one k-mer with the haplotypes, and the mate of each.

    :param haplotypes: Unflanked candidate haplotypes.
    :param sample_index: SampleIndex to search.
    :param k: Seed length.
    :param reverse: Search for reads on the opposite strand to the haplotypes.
    :param max_reads: Maximum number of matched reads.
    :param max_kmer_occurrences: Maximum number of reads a single k-mer may hit, or None.
    :return: Tuple (reads, mates) in read-index order.
    :raises OverDepthError: If either depth limit is exceeded.
    """
    read_indices: Set[int] = set()
    for kmer in sorted(haplotype_kmers(haplotypes, k, reverse)):
        hits = sample_index.find_read_indices(kmer)
        if max_kmer_occurrences is not None and len(hits) > max_kmer_occurrences:
            raise OverDepthError(f"k-mer {kmer} occurs in {len(hits)} reads (limit {max_kmer_occurrences})")
        read_indices.update(hits)
        if len(read_indices) > max_reads:
            raise OverDepthError(f"More than {max_reads} reads match the haplotypes")

    reads = []
    mates = []
    for index in sorted(read_indices):
        reads.append(sample_index.get_read(index))
        if sample_index.has_mate(index):
            mates.append(sample_index.get_read(sample_index.mate_index(index)))

    strand = "reverse" if reverse else "forward"
    logger.debug(f"Extracted {len(reads)} {strand} reads and {len(mates)} mates from {sample_index.name}")
    return reads, mates
