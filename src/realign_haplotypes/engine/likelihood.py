"""
Default realignment engine for RealignHaplotypes.
Scores every read against every haplotype of the window and estimates haplotype
frequencies by expectation maximisation.
"""

import logging
import math
from typing import List, Optional, TextIO

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view
from scipy.special import logsumexp

from src.realign_haplotypes.core.models import EngineRead, RealignmentResult, RealignmentWindow
from src.realign_haplotypes.core.parameters import RealignParameters
from src.realign_haplotypes.engine.base import RealignmentEngineError

logger = logging.getLogger(__name__)

SUPPORTED_MODELS = ("hmm",)
MIN_FREQUENCY = 1e-6
PHRED_SCALE = 10.0 / math.log(10.0)
_N = ord("N")
_LOG_QUARTER = math.log(0.25)

def _encode(seq: str) -> np.ndarray:
    return np.frombuffer(seq.upper().encode("ascii"), dtype=np.uint8)

def read_haplotype_log_likelihood(read: EngineRead, haplotype: str) -> float:
    """
    Log-likelihood of the best ungapped placement of a read on a haplotype.
    The read may overhang either end; overhanging and N bases score log(1/4).
    Mapping quality is mixed in as the probability that the read belongs elsewhere.

    :param read: EngineRead with base and mapping qualities.
    :param haplotype: Haplotype sequence.
    :return: Natural log-likelihood.
    """
    read_arr = _encode(read.sequence)
    length = len(read_arr)
    if length == 0:
        return 0.0

    error = 10.0 ** (-read.base_quality / 10.0)
    log_match = math.log1p(-error)
    log_mismatch = math.log(error / 3.0)

    padding = "N" * (length - 1)
    windows = sliding_window_view(_encode(padding + haplotype + padding), length)
    unknown = (windows == _N) | (read_arr == _N)
    scores = np.where(unknown, _LOG_QUARTER, np.where(windows == read_arr, log_match, log_mismatch))
    best = float(scores.sum(axis=1).max())

    mapping_error = 10.0 ** (-read.mapping_quality / 10.0)
    return float(np.logaddexp(math.log1p(-mapping_error) + best, math.log(mapping_error) + length * _LOG_QUARTER))

def estimate_frequencies(log_likelihoods: np.ndarray, initial: Optional[np.ndarray] = None,
                         iterations: int = 50) -> np.ndarray:
    """
    EM estimate of haplotype frequencies from a reads x haplotypes log-likelihood matrix.
    """
    num_haplotypes = log_likelihoods.shape[1]
    if initial is None:
        freqs = np.full(num_haplotypes, 1.0 / num_haplotypes)
    else:
        freqs = np.clip(np.asarray(initial, dtype=float), MIN_FREQUENCY, None)
        freqs = freqs / freqs.sum()

    if log_likelihoods.shape[0] == 0:
        return freqs

    for _ in range(iterations):
        log_post = log_likelihoods + np.log(freqs)
        resp = np.exp(log_post - logsumexp(log_post, axis=1, keepdims=True))
        freqs = np.clip(resp.mean(axis=0), MIN_FREQUENCY, None)
        freqs = freqs / freqs.sum()
    return freqs

def total_log_likelihood(log_likelihoods: np.ndarray, freqs: np.ndarray) -> float:
    if log_likelihoods.shape[0] == 0:
        return 0.0
    return float(logsumexp(log_likelihoods + np.log(freqs), axis=1).sum())

class HaplotypeLikelihoodEngine:
    """
    Read/haplotype likelihood engine.

    :param window: RealignmentWindow with the haplotypes and reference mappings.
    :param reads: Reads of one sample.
    :param parameters: RealignParameters (EM iterations).
    """

    def __init__(self, window: RealignmentWindow, reads: List[EngineRead], parameters: RealignParameters):
        self.window = window
        self.reads = list(reads)
        self.parameters = parameters

    def log_likelihood_matrix(self) -> np.ndarray:
        matrix = np.zeros((len(self.reads), len(self.window.haplotypes)))
        for r, read in enumerate(self.reads):
            for h, haplotype in enumerate(self.window.haplotypes):
                matrix[r, h] = read_haplotype_log_likelihood(read, haplotype)
        return matrix

    def _haplotype_qualities(self, matrix: np.ndarray, freqs: np.ndarray, full_ll: float) -> List[float]:
        """
        Phred-scaled likelihood ratio of the full model against the model without each haplotype.
        """
        qualities = []
        for h in range(matrix.shape[1]):
            reduced = np.delete(matrix, h, axis=1)
            reduced_freqs = estimate_frequencies(reduced, np.delete(freqs, h), self.parameters.em_iterations)
            reduced_ll = total_log_likelihood(reduced, reduced_freqs)
            qualities.append(max(0.0, PHRED_SCALE * (full_ll - reduced_ll)))
        return qualities

    def run(
        self,
        model: str,
        out: TextIO,
        sample_id: str,
        result: RealignmentResult,
        previous_result: Optional[RealignmentResult] = None
    ) -> None:
        """
        Score the reads, fill `result` and write one line per haplotype to `out`.
        When a previous (base sample) result is given its frequencies seed the estimate
        and are reported alongside the new ones.
        """
        if model not in SUPPORTED_MODELS:
            raise RealignmentEngineError(f"Unknown realignment model: {model}")
        num_haplotypes = len(self.window.haplotypes)
        if num_haplotypes < 2:
            raise RealignmentEngineError(f"Need at least 2 haplotypes, got {num_haplotypes}")

        matrix = self.log_likelihood_matrix()

        initial = None
        previous_freqs = None
        if previous_result is not None and len(previous_result.frequencies) == num_haplotypes:
            previous_freqs = np.asarray(previous_result.frequencies, dtype=float)
            initial = 0.5 * previous_freqs + 0.5 / num_haplotypes

        freqs = estimate_frequencies(matrix, initial, self.parameters.em_iterations)
        full_ll = total_log_likelihood(matrix, freqs)

        support = np.zeros(num_haplotypes, dtype=int)
        if len(self.reads) > 0:
            best = matrix.argmax(axis=1)
            ordered = np.sort(matrix, axis=1)
            unique = ordered[:, -1] - ordered[:, -2] > 1e-9
            for h in best[unique]:
                support[h] += 1

        result.sample_id = sample_id
        result.frequencies = [float(f) for f in freqs]
        result.read_support = [int(s) for s in support]
        result.qualities = self._haplotype_qualities(matrix, freqs, full_ll)
        result.log_likelihood = full_ll
        result.num_reads = len(self.reads)

        reference_indices = set(self.window.reference_haplotype_indices())
        location = "."
        if self.window.reference_mappings:
            mapping = self.window.reference_mappings[0]
            location = f"{mapping.ref_name}:{mapping.ref_start}-{mapping.ref_end}"

        for h in range(num_haplotypes):
            previous = f"{previous_freqs[h]:.4f}" if previous_freqs is not None else "."
            out.write(
                f"{sample_id}\t{location}\t{h}\t{int(h in reference_indices)}\t"
                f"{result.frequencies[h]:.4f}\t{result.read_support[h]}\t{result.qualities[h]:.2f}\t{previous}\n"
            )
        logger.debug(f"{sample_id}: {len(self.reads)} reads over {num_haplotypes} haplotypes, log-likelihood {full_ll:.2f}")
