"""
Haplotype set parser for RealignHaplotypes.
Reads the candidate variants (base and variant haplotypes) from a TSV file.
"""

import logging
from typing import List

import pandas as pd

from src.realign_haplotypes.core.models import HaplotypeSet

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ['id', 'base_haplotypes', 'variant_haplotypes']

def split_haplotypes(value) -> List[str]:
    """
    Split a comma separated haplotype field. Missing values give an empty list.
    """
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return []
    return [h.strip().upper() for h in str(value).split(',') if h.strip()]

def parse_haplotype_sets(haplotype_path: str) -> List[HaplotypeSet]:
    """
    Parse a haplotype TSV with columns id, base_haplotypes and variant_haplotypes.

    :param haplotype_path: Path to the TSV file (with header).
    :return: List of HaplotypeSet objects in file order.
    """
    try:
        df = pd.read_csv(haplotype_path, sep='\t', dtype=str, comment='#', encoding='utf-8')
    except Exception as e:
        logger.error(f"Failed to read haplotype file {haplotype_path}: {e}")
        raise

    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Haplotype file {haplotype_path} is missing columns: {', '.join(missing)}")

    haplotype_sets = []
    for row in df.itertuples(index=False):
        hs = HaplotypeSet(
            variant_id=str(row.id),
            base_haplotypes=split_haplotypes(row.base_haplotypes),
            variant_haplotypes=split_haplotypes(row.variant_haplotypes)
        )
        if not hs.haplotypes:
            logger.warning(f"Skipping {hs.variant_id}: no haplotypes")
            continue
        haplotype_sets.append(hs)

    if len(haplotype_sets) < len(df):
        logger.info(f"Dropped {len(df) - len(haplotype_sets)} haplotype sets without haplotypes")
    return haplotype_sets
