import random

import pytest
from Bio.Seq import reverse_complement

from src.realign_haplotypes.core.models import HaplotypeSet, SequenceRecord
from src.realign_haplotypes.core.parameters import RealignContext, RealignParameters
from src.realign_haplotypes.index.reference import ReferenceIndex, ReferenceTable
from src.realign_haplotypes.index.sample import SampleIndex

# The candidate haplotypes cover reference[1440:1560]; the variant substitutes offset 40
HAP_START = 1440
HAP_END = 1560
VARIANT_OFFSET = 40

def random_sequence(length: int, seed: int) -> str:
    rng = random.Random(seed)
    return ''.join(rng.choice('ACGT') for _ in range(length))

def substitute(seq: str, offset: int) -> str:
    alt = {'A': 'C', 'C': 'G', 'G': 'T', 'T': 'A'}[seq[offset]]
    return seq[:offset] + alt + seq[offset + 1:]

def make_read_pairs(haplotype: str, prefix: str, read_length: int = 40, fragment_length: int = 100):
    """
    Read pairs tiling the haplotype: read 1 is the fragment start, read 2 the
    reverse complement of the fragment end.
    """
    reads = []
    for s in range(0, len(haplotype) - fragment_length + 1, 2):
        fragment = haplotype[s:s + fragment_length]
        reads.append(SequenceRecord(f"{prefix}_{s}/1", fragment[:read_length]))
        reads.append(SequenceRecord(f"{prefix}_{s}/2", reverse_complement(fragment[-read_length:])))
    return reads

@pytest.fixture
def reference_seq():
    return random_sequence(3000, seed=7)

@pytest.fixture
def reference_table(reference_seq):
    return ReferenceTable([SequenceRecord('chr1', reference_seq)])

@pytest.fixture
def reference_index(reference_table):
    return ReferenceIndex(reference_table, k=31)

@pytest.fixture
def base_haplotype(reference_seq):
    return reference_seq[HAP_START:HAP_END]

@pytest.fixture
def variant_haplotype(base_haplotype):
    return substitute(base_haplotype, VARIANT_OFFSET)

@pytest.fixture
def haplotype_set(base_haplotype, variant_haplotype):
    return HaplotypeSet('var1', [base_haplotype], [variant_haplotype])

@pytest.fixture
def base_index(base_haplotype):
    return SampleIndex(make_read_pairs(base_haplotype, 'base'), name='base')

@pytest.fixture
def variant_index(variant_haplotype):
    return SampleIndex(make_read_pairs(variant_haplotype, 'variant'), name='variant')

@pytest.fixture
def context(reference_table, reference_index, base_index, variant_index):
    return RealignContext(
        reference_table=reference_table,
        reference_index=reference_index,
        variant_index=variant_index,
        base_index=base_index,
        parameters=RealignParameters(kmer=31)
    )
