"""
Resolved run parameters for RealignHaplotypes.
The command line populates these; the core only reads them.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

@dataclass
class RealignParameters:
    """
    Parameters for read extraction and the two-sample realignment.
    """
    kmer: int = 41
    kmer_ceiling: int = 41  # Never search the sample index with longer seeds
    reference_kmer: int = 31
    realign_mate_pairs: bool = False
    reference_mode: bool = False
    flank_size: int = 1000
    max_alignments: int = 10
    max_reads: int = 40_000_000_000
    max_kmer_occurrences: Optional[int] = None
    mapping_quality: float = 40.0
    base_quality: int = 20
    model: str = "hmm"
    em_iterations: int = 50

    def flanking_size(self) -> int:
        return self.flank_size if self.realign_mate_pairs else 0

    def extraction_kmer(self) -> int:
        return min(self.kmer, self.kmer_ceiling)

@dataclass
class SelectionPolicy:
    """
    Parameters for choosing the best reference placement from mate reads.
    The score thresholds are only applied when `enforce_thresholds` is set.
    """
    max_mate_depth: int = 2000
    flank_size: int = 1000
    enforce_thresholds: bool = False
    min_score_fraction: float = 0.9
    min_margin: float = 0.05

@dataclass
class RealignContext:
    """
    Read-only collaborators shared by every orchestration call in a run.
    """
    reference_table: Any
    reference_index: Any
    variant_index: Any
    base_index: Any = None
    parameters: RealignParameters = field(default_factory=RealignParameters)
    engine_factory: Optional[Callable[..., Any]] = None
