"""
Return code statistics for RealignHaplotypes.
Includes per-outcome counting, the summary report text and read depth summaries.
"""

import numpy as np
from typing import List, Dict, Iterable

from src.realign_haplotypes.core.models import RealignmentOutcome, ReturnCode

REPORT_LINES = [
    (ReturnCode.OVER_DEPTH, "number failed due to depth check"),
    (ReturnCode.NO_ALIGNMENT, "number failed due to no alignment"),
    (ReturnCode.POOR_ALIGNMENT, "number failed due to poor alignment"),
    (ReturnCode.AMBIGUOUS_ALIGNMENT, "number failed due to ambiguous alignment"),
    (ReturnCode.EXCEPTION, "number failed due to realignment exception"),
    (ReturnCode.OK, "number passed to realignment"),
]

def initialize_code_counts() -> Dict[ReturnCode, int]:
    return {code: 0 for code in ReturnCode}

def count_return_codes(outcomes: Iterable[RealignmentOutcome]) -> Dict[ReturnCode, int]:
    """
    Count outcomes per ReturnCode.

    :param outcomes: RealignmentOutcome objects (or anything with a `code`).
    :return: Dictionary with a count for every ReturnCode.
    """
    counts = initialize_code_counts()
    for outcome in outcomes:
        counts[outcome.code] += 1
    return counts

def format_return_report(counts: Dict[ReturnCode, int]) -> List[str]:
    """
    Render the return code summary, one line per entry.
    """
    lines = [f"Total variants processed: {sum(counts.values())}"]
    for code, label in REPORT_LINES:
        lines.append(f"    {label}: {counts.get(code, 0)}")
    return lines

def summarize_read_depth(outcomes: List[RealignmentOutcome]) -> Dict[str, float]:
    """
    Summary statistics of the reads extracted per haplotype set.

    :param outcomes: RealignmentOutcome objects.
    :return: Dictionary with mean, median, max and total read counts.
    """
    depths = np.array([o.num_reads for o in outcomes], dtype=float)
    if depths.size == 0:
        return {"Mean Reads": 0.0, "Median Reads": 0.0, "Max Reads": 0.0, "Total Reads": 0.0}
    return {
        "Mean Reads": float(depths.mean()),
        "Median Reads": float(np.median(depths)),
        "Max Reads": float(depths.max()),
        "Total Reads": float(depths.sum())
    }
