"""
Sequencing read parser for RealignHaplotypes.
Reads paired FASTA/FASTQ files into a SampleIndex with mates stored adjacently.
"""

import gzip
import logging
from pathlib import Path
from typing import List, Sequence

from Bio import SeqIO

from src.realign_haplotypes.core.models import SequenceRecord
from src.realign_haplotypes.index.sample import SampleIndex

logger = logging.getLogger(__name__)

FASTQ_SUFFIXES = {".fq", ".fastq"}

def open_sequence_file(path: str):
    """
    Open a plain or gzipped sequence file for reading text.
    """
    if str(path).endswith(".gz"):
        return gzip.open(path, "rt", encoding="utf-8")
    return open(path, "r", encoding="utf-8")

def detect_format(path: str) -> str:
    """
    :param path: Sequence file path.
    :return: 'fastq' for .fq/.fastq (optionally .gz) files, otherwise 'fasta'.
    """
    suffixes = Path(path).suffixes
    if suffixes and suffixes[-1] == ".gz":
        suffixes = suffixes[:-1]
    if suffixes and suffixes[-1].lower() in FASTQ_SUFFIXES:
        return "fastq"
    return "fasta"

def read_sequences(path: str) -> List[SequenceRecord]:
    """
    Read every record of a FASTA or FASTQ file.
    """
    fmt = detect_format(path)
    try:
        with open_sequence_file(path) as handle:
            return [SequenceRecord(str(r.id), str(r.seq).upper()) for r in SeqIO.parse(handle, fmt)]
    except Exception as e:
        logger.error(f"Failed to read {fmt} file {path}: {e}")
        raise

def parse_reads(paths: Sequence[str], name: str = "sample") -> SampleIndex:
    """
    Parse the reads of one sample.
    A single file is taken to be interleaved; two files are first and second mates.

    :param paths: One interleaved file or two paired files.
    :param name: Sample name.
    :return: SampleIndex with mates adjacent.
    """
    if len(paths) == 1:
        reads = read_sequences(paths[0])
    elif len(paths) == 2:
        first = read_sequences(paths[0])
        second = read_sequences(paths[1])
        if len(first) != len(second):
            raise ValueError(f"Paired files {paths[0]} and {paths[1]} have {len(first)} and {len(second)} reads")
        reads = []
        for r1, r2 in zip(first, second):
            reads.append(r1)
            reads.append(r2)
    else:
        raise ValueError(f"Expected one interleaved or two paired read files, got {len(paths)}")

    logger.info(f"Loaded {len(reads)} reads for {name}")
    return SampleIndex(reads, name=name)
