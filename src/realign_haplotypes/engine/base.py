"""
Realignment engine interface.
An engine is built from a window, the reads of one sample and the run parameters,
and writes its per-haplotype verdicts to an output stream.
"""

from typing import List, Optional, Protocol, TextIO

from src.realign_haplotypes.core.models import EngineRead, RealignmentResult, RealignmentWindow
from src.realign_haplotypes.core.parameters import RealignParameters

class RealignmentEngineError(Exception):
    """
    Unrecoverable failure inside a realignment engine.
    """

class RealignmentEngine(Protocol):
    def run(
        self,
        model: str,
        out: TextIO,
        sample_id: str,
        result: RealignmentResult,
        previous_result: Optional[RealignmentResult] = None
    ) -> None:
        ...

class RealignmentEngineFactory(Protocol):
    def __call__(
        self,
        window: RealignmentWindow,
        reads: List[EngineRead],
        parameters: RealignParameters
    ) -> RealignmentEngine:
        ...
