"""
Data models for RealignHaplotypes.
Defines the alignment, reference mapping, read and result classes and the ReturnCode enum.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Tuple, Optional, Dict

from Bio.Seq import reverse_complement

class ReturnCode(Enum):
    """
    Enum representing the terminal outcome of evaluating one haplotype set.
    """
    OK = "OK"
    NO_ALIGNMENT = "NO_ALIGNMENT"
    OVER_DEPTH = "OVER_DEPTH"
    POOR_ALIGNMENT = "POOR_ALIGNMENT"
    AMBIGUOUS_ALIGNMENT = "AMBIGUOUS_ALIGNMENT"
    EXCEPTION = "EXCEPTION"

    @property
    def is_fatal(self) -> bool:
        return self is ReturnCode.EXCEPTION

@dataclass(frozen=True)
class SequenceRecord:
    """
    A named sequence: a reference contig or a sequencing read.
    """
    id: str
    seq: str

@dataclass(frozen=True, order=True)
class CandidateAlignment:
    """
    Placement of a haplotype on a reference contig.
    `position` is the 0-based offset of the aligned haplotype within the contig.
    """
    reference_id: int
    position: int
    is_rc: bool
    score: int
    length: int

    @property
    def end(self) -> int:
        return self.position + self.length

@dataclass(frozen=True)
class ReferenceMapping:
    """
    A flanked reference interval handed to the realignment engine.
    `ref_start` is 1-based.
    """
    ref_name: str
    ref_seq: str
    ref_start: int
    reference_alignment_score: float
    is_rc: bool

    @property
    def key(self) -> Tuple[str, int, str, bool]:
        return (self.ref_name, self.ref_start, self.ref_seq, self.is_rc)

    @property
    def ref_end(self) -> int:
        return self.ref_start + len(self.ref_seq) - 1

@dataclass(frozen=True)
class LocalAlignment:
    """
    Result of a local alignment of a read against a reference region.
    Query coordinates are 0-based, end exclusive.
    """
    score: float
    query_start: int
    query_end: int

@dataclass(frozen=True)
class EngineRead:
    """
    A read as consumed by the realignment engine.
    """
    id: str
    sequence: str
    sample: str
    mapping_quality: float
    base_quality: int
    is_forward: bool

@dataclass
class ReadSet:
    """
    The four read bags extracted from one sample.
    """
    forward: List[SequenceRecord] = field(default_factory=list)
    forward_mates: List[SequenceRecord] = field(default_factory=list)
    reverse: List[SequenceRecord] = field(default_factory=list)
    reverse_mates: List[SequenceRecord] = field(default_factory=list)

    def total(self) -> int:
        return len(self.forward) + len(self.forward_mates) + len(self.reverse) + len(self.reverse_mates)

@dataclass(frozen=True)
class RealignmentWindow:
    """
    Unique flanked haplotypes plus the canonical reference mappings they are scored against.
    Built once per haplotype set and shared by both sample invocations.
    """
    haplotypes: Tuple[str, ...]
    reference_mappings: Tuple[ReferenceMapping, ...]

    def reference_haplotype_indices(self) -> List[int]:
        """
        Indices of haplotypes that are identical to the reference sequence of a mapping.
        """
        reference_seqs = set()
        for mapping in self.reference_mappings:
            reference_seqs.add(mapping.ref_seq)
            reference_seqs.add(reverse_complement(mapping.ref_seq))
        return [i for i, h in enumerate(self.haplotypes) if h in reference_seqs]

@dataclass
class RealignmentResult:
    """
    Per-sample output of the realignment engine.
    """
    sample_id: Optional[str] = None
    frequencies: List[float] = field(default_factory=list)
    read_support: List[int] = field(default_factory=list)
    qualities: List[float] = field(default_factory=list)
    log_likelihood: float = 0.0
    num_reads: int = 0

@dataclass
class RealignmentOutcome:
    """
    Summary of one orchestration call, used for the return code report.
    """
    variant_id: str
    code: ReturnCode
    num_alignments: int = 0
    num_haplotypes: int = 0
    num_reads: int = 0
    message: Optional[str] = None

@dataclass
class SelectionResult:
    """
    Outcome of choosing the best reference placement for a haplotype set.
    """
    code: ReturnCode
    alignment: Optional[CandidateAlignment] = None
    best_score: float = 0.0
    second_best_score: float = 0.0
    candidate_scores: Dict[int, float] = field(default_factory=dict)

@dataclass
class HaplotypeSet:
    """
    A candidate variant: its base haplotypes and its variant haplotypes.
    """
    variant_id: str
    base_haplotypes: List[str] = field(default_factory=list)
    variant_haplotypes: List[str] = field(default_factory=list)

    @property
    def haplotypes(self) -> List[str]:
        return list(self.base_haplotypes) + list(self.variant_haplotypes)
