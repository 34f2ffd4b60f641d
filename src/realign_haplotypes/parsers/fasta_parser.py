"""
FASTA file parser for RealignHaplotypes.
Handles reading the reference genome into a ReferenceTable.
"""

import logging
from typing import List

from Bio import SeqIO

from src.realign_haplotypes.core.models import SequenceRecord
from src.realign_haplotypes.index.reference import ReferenceTable
from src.realign_haplotypes.parsers.read_parser import open_sequence_file

logger = logging.getLogger(__name__)

def to_sequence_record(sequence_record) -> SequenceRecord:
    """
    Convert a Biopython SeqRecord into a SequenceRecord.

    :param sequence_record: A Biopython SeqRecord object.
    :return: SequenceRecord with an upper-case sequence.
    """
    return SequenceRecord(str(sequence_record.id), str(sequence_record.seq).upper())

def parse_reference(fasta_path: str) -> ReferenceTable:
    """
    Parse a reference FASTA file.

    :param fasta_path: Path to the FASTA file (optionally gzipped).
    :return: ReferenceTable with contigs in file order.
    """
    with open_sequence_file(fasta_path) as handle:
        records: List[SequenceRecord] = [to_sequence_record(r) for r in SeqIO.parse(handle, "fasta")]

    if not records:
        raise ValueError(f"Reference FASTA {fasta_path} contains no sequences")

    total = sum(len(r.seq) for r in records)
    logger.info(f"Loaded {len(records)} reference contigs ({total} bp) from {fasta_path}")
    return ReferenceTable(records)
