"""
Paired read collection with k-mer lookup.
Mates are stored next to each other, so the mate of read i is read i ^ 1.
"""

import logging
from collections import defaultdict
from typing import Dict, List, Set

from src.realign_haplotypes.core.models import SequenceRecord

logger = logging.getLogger(__name__)

class SampleIndex:
    """
    Reads of one sample, indexed by the k-mers they contain.

    :param reads: Reads in pair order (read 2i and 2i+1 are mates).
    :param name: Sample name used in log messages.
    """

    def __init__(self, reads: List[SequenceRecord], name: str = "sample"):
        if len(reads) % 2 != 0:
            logger.warning(f"Sample {name} has an odd number of reads; the last read has no mate")
        self.reads = [SequenceRecord(r.id, r.seq.upper()) for r in reads]
        self.name = name
        self._kmer_tables: Dict[int, Dict[str, Set[int]]] = {}

    def __len__(self) -> int:
        return len(self.reads)

    def get_read(self, index: int) -> SequenceRecord:
        return self.reads[index]

    def mate_index(self, index: int) -> int:
        return index ^ 1

    def has_mate(self, index: int) -> bool:
        return self.mate_index(index) < len(self.reads)

    def build(self, k: int) -> Dict[str, Set[int]]:
        """
        Build (or fetch the cached) k-mer to read-index table for length k.
        Call once before sharing the index with worker processes.
        """
        table = self._kmer_tables.get(k)
        if table is not None:
            return table

        table = defaultdict(set)
        for i, read in enumerate(self.reads):
            seq = read.seq
            for j in range(len(seq) - k + 1):
                table[seq[j:j + k]].add(i)
        self._kmer_tables[k] = table
        logger.debug(f"Built {k}-mer table for {self.name}: {len(table)} k-mers over {len(self.reads)} reads")
        return table

    def find_read_indices(self, kmer: str) -> Set[int]:
        """
        :param kmer: Exact k-mer to look up.
        :return: Indices of reads containing the k-mer.
        """
        return self.build(len(kmer)).get(kmer, set())
