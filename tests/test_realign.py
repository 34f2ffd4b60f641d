import io
from dataclasses import replace

import pytest
from Bio.Seq import reverse_complement
from src.realign_haplotypes.core import realign
from src.realign_haplotypes.core.models import (
    CandidateAlignment,
    HaplotypeSet,
    ReadSet,
    ReturnCode,
    SequenceRecord
)
from src.realign_haplotypes.core.parameters import RealignParameters
from src.realign_haplotypes.core.reads import OverDepthError
from src.realign_haplotypes.core.realign import build_engine_reads, run_realignment_pair

class RecordingEngine:
    """
    Engine stand-in that records every call and writes a recognisable line.
    """
    calls = []

    def __init__(self, window, reads, parameters):
        self.window = window
        self.reads = reads

    def run(self, model, out, sample_id, result, previous_result=None):
        RecordingEngine.calls.append({
            'model': model,
            'window': self.window,
            'num_reads': len(self.reads),
            'result': result,
            'previous_result': previous_result
        })
        result.sample_id = sample_id
        out.write(f"{sample_id}\tcall{len(RecordingEngine.calls)}\t{len(self.reads)}\n")

class FailingEngine(RecordingEngine):
    def run(self, model, out, sample_id, result, previous_result=None):
        raise RuntimeError("profile alignment diverged")

class FixedReferenceIndex:
    """
    Reference index returning a fixed list of alignments for every haplotype.
    """

    def __init__(self, alignments):
        self.alignments = alignments

    def align_haplotype_kmer(self, haplotype):
        return list(self.alignments)

@pytest.fixture(autouse=True)
def reset_engine_calls():
    RecordingEngine.calls = []

def run(haplotype_set, context):
    base_out = io.StringIO()
    variant_out = io.StringIO()
    outcome = run_realignment_pair(haplotype_set, context, base_out, variant_out)
    return outcome, base_out.getvalue(), variant_out.getvalue()

def test_realignment_pair_ok(haplotype_set, context):
    context.engine_factory = RecordingEngine

    outcome, base_text, variant_text = run(haplotype_set, context)

    assert outcome.code == ReturnCode.OK
    # Base and variant haplotype land on the same placement
    assert outcome.num_alignments == 1
    # The reference interval equals the base haplotype
    assert outcome.num_haplotypes == 2
    # 11 read pairs per sample, each pair found once per strand with its mate
    assert outcome.num_reads == 88

    assert len(RecordingEngine.calls) == 2
    base_call, variant_call = RecordingEngine.calls
    assert base_call['previous_result'] is None
    assert variant_call['previous_result'] is base_call['result']
    assert base_call['window'] is variant_call['window']
    assert base_call['model'] == 'hmm'

    # Mates are only passed with mate pair realignment
    assert base_call['num_reads'] == 22
    assert base_text == "var1\tcall1\t22\n"
    assert variant_text == "var1\tcall2\t22\n"

def test_realignment_pair_window_contents(haplotype_set, context, base_haplotype, variant_haplotype):
    context.engine_factory = RecordingEngine

    run(haplotype_set, context)

    window = RecordingEngine.calls[0]['window']
    assert window.haplotypes == tuple(sorted([base_haplotype, variant_haplotype]))
    mapping, = window.reference_mappings
    assert mapping.ref_name == 'chr1'
    assert mapping.ref_start == 1441
    assert mapping.ref_seq == base_haplotype
    assert mapping.reference_alignment_score == 1000

def test_realignment_pair_with_mate_pairs(haplotype_set, context, reference_seq):
    context.engine_factory = RecordingEngine
    context.parameters = replace(context.parameters, realign_mate_pairs=True)

    outcome, _, _ = run(haplotype_set, context)

    assert outcome.code == ReturnCode.OK
    window = RecordingEngine.calls[0]['window']
    # Haplotypes carry 1000bp of reference on each side
    assert all(len(h) == 2120 for h in window.haplotypes)
    assert window.reference_mappings[0].ref_seq == reference_seq[440:2560]
    assert window.reference_mappings[0].ref_start == 441
    assert RecordingEngine.calls[0]['num_reads'] == 44

def test_realignment_pair_reference_mode(haplotype_set, context):
    context.engine_factory = RecordingEngine
    context.base_index = None
    context.parameters = replace(context.parameters, reference_mode=True)

    outcome, base_text, variant_text = run(haplotype_set, context)

    assert outcome.code == ReturnCode.OK
    assert outcome.num_reads == 44
    assert len(RecordingEngine.calls) == 1
    assert RecordingEngine.calls[0]['previous_result'] is None
    assert base_text == ""
    assert variant_text == "var1\tcall1\t22\n"

def test_ambiguous_alignment_skips_read_extraction(haplotype_set, context, monkeypatch):
    context.engine_factory = RecordingEngine
    context.reference_index = FixedReferenceIndex(
        [CandidateAlignment(0, 100 + 100 * i, False, 50, 50) for i in range(11)]
    )
    extraction_calls = []
    monkeypatch.setattr(realign, 'extract_haplotype_reads', lambda *a, **kw: extraction_calls.append(a))

    outcome, _, _ = run(haplotype_set, context)

    assert outcome.code == ReturnCode.AMBIGUOUS_ALIGNMENT
    assert outcome.num_alignments == 11
    assert extraction_calls == []
    assert RecordingEngine.calls == []

def test_ten_alignments_are_allowed(haplotype_set, context):
    context.engine_factory = RecordingEngine
    context.reference_index = FixedReferenceIndex(
        [CandidateAlignment(0, 100 + 100 * i, False, 50, 50) for i in range(10)]
    )

    outcome, _, _ = run(haplotype_set, context)

    assert outcome.code != ReturnCode.AMBIGUOUS_ALIGNMENT
    assert outcome.num_alignments == 10

def test_staggered_placements_are_ambiguous(haplotype_set, context):
    context.engine_factory = RecordingEngine
    # Each placement overlaps the next by 5 of 50 bases, as along a tandem repeat
    context.reference_index = FixedReferenceIndex(
        [CandidateAlignment(0, 100 + 45 * i, False, 50, 50) for i in range(11)]
    )

    outcome, _, _ = run(haplotype_set, context)

    assert outcome.code == ReturnCode.AMBIGUOUS_ALIGNMENT
    assert outcome.num_alignments == 11
    assert RecordingEngine.calls == []

def test_flanked_haplotypes_are_deduplicated(haplotype_set, context):
    context.engine_factory = RecordingEngine
    placements = [CandidateAlignment(0, p, False, 50, 50) for p in (100, 300, 500)]
    context.reference_index = FixedReferenceIndex(placements)

    outcome, _, _ = run(haplotype_set, context)

    assert outcome.code == ReturnCode.OK
    # Three reference intervals, plus the two input haplotypes which are identical
    # at every placement without flanks
    assert outcome.num_haplotypes == 5
    assert outcome.num_haplotypes <= len(placements) * (len(haplotype_set.haplotypes) + 1)

def test_realignment_pair_reverse_strand(base_haplotype, variant_haplotype, context):
    context.engine_factory = RecordingEngine
    rc_base = reverse_complement(base_haplotype)
    rc_variant = reverse_complement(variant_haplotype)

    outcome, _, _ = run(HaplotypeSet('var1', [rc_base], [rc_variant]), context)

    assert outcome.code == ReturnCode.OK
    assert outcome.num_alignments == 1
    assert outcome.num_haplotypes == 2
    # Read 2s now match the haplotype strand and read 1s the opposite strand
    assert outcome.num_reads == 88

    window = RecordingEngine.calls[0]['window']
    assert window.haplotypes == tuple(sorted([rc_base, rc_variant]))
    mapping, = window.reference_mappings
    assert mapping.is_rc is True
    assert mapping.ref_start == 1441
    # Mappings keep the forward strand sequence
    assert mapping.ref_seq == base_haplotype
    assert [window.haplotypes[i] for i in window.reference_haplotype_indices()] == [rc_base]

@pytest.mark.parametrize("failing_call", [1, 2, 3, 4])
def test_over_depth_at_any_extraction(haplotype_set, context, monkeypatch, failing_call):
    context.engine_factory = RecordingEngine
    real_extract = realign.extract_haplotype_reads
    calls = []

    def extract(*args, **kwargs):
        calls.append(args[1].name)
        if len(calls) == failing_call:
            raise OverDepthError("too many reads")
        return real_extract(*args, **kwargs)

    monkeypatch.setattr(realign, 'extract_haplotype_reads', extract)

    outcome, _, _ = run(haplotype_set, context)

    assert outcome.code == ReturnCode.OVER_DEPTH
    assert len(calls) == failing_call
    # Base sample is searched first
    assert calls[0] == 'base'
    assert RecordingEngine.calls == []

def test_over_depth_on_total_reads(haplotype_set, context):
    context.engine_factory = RecordingEngine
    # Each extraction finds 11 reads; the four together bring 88 reads and mates
    context.parameters = replace(context.parameters, max_reads=50)

    outcome, _, _ = run(haplotype_set, context)

    assert outcome.code == ReturnCode.OVER_DEPTH
    assert outcome.num_reads == 88
    assert RecordingEngine.calls == []

def test_single_distinct_haplotype_is_no_alignment(base_haplotype, context):
    context.engine_factory = RecordingEngine
    # The base haplotype equals its own reference interval, so one flanked haplotype remains
    outcome, _, _ = run(HaplotypeSet('var1', [base_haplotype], [base_haplotype]), context)

    assert outcome.code == ReturnCode.NO_ALIGNMENT
    assert outcome.num_haplotypes == 1
    assert RecordingEngine.calls == []

def test_empty_reference_haplotype_is_no_alignment(haplotype_set, context):
    context.engine_factory = RecordingEngine
    context.reference_index = FixedReferenceIndex([CandidateAlignment(0, 1500, False, 10, 0)])

    outcome, _, _ = run(haplotype_set, context)

    assert outcome.code == ReturnCode.NO_ALIGNMENT
    assert RecordingEngine.calls == []

def test_no_candidate_alignment_is_no_alignment(haplotype_set, context):
    context.engine_factory = RecordingEngine
    context.reference_index = FixedReferenceIndex([])

    outcome, _, _ = run(haplotype_set, context)

    assert outcome.code == ReturnCode.NO_ALIGNMENT
    assert outcome.num_alignments == 0

def test_engine_failure_is_reported_not_raised(haplotype_set, context):
    context.engine_factory = FailingEngine

    outcome, _, _ = run(haplotype_set, context)

    assert outcome.code == ReturnCode.EXCEPTION
    assert outcome.code.is_fatal
    assert "diverged" in outcome.message

def test_build_engine_reads_orientation():
    read_set = ReadSet(
        forward=[SequenceRecord('f', 'AACG')],
        forward_mates=[SequenceRecord('fm', 'AAAC')],
        reverse=[SequenceRecord('r', 'GGGT')],
        reverse_mates=[SequenceRecord('rm', 'CCCA')]
    )

    reads = build_engine_reads(read_set, RealignParameters())
    assert [(r.id, r.sequence, r.is_forward) for r in reads] == [('f', 'AACG', True), ('r', 'ACCC', False)]

    reads = build_engine_reads(read_set, RealignParameters(realign_mate_pairs=True))
    # Forward mates are reverse complemented, reverse mates are not
    assert [(r.id, r.sequence, r.is_forward) for r in reads] == [
        ('f', 'AACG', True),
        ('r', 'ACCC', False),
        ('fm', 'GTTT', True),
        ('rm', 'CCCA', False),
    ]
    assert all(r.mapping_quality == 40.0 and r.base_quality == 20 for r in reads)

def test_realignment_pair_with_likelihood_engine(haplotype_set, context, variant_haplotype):
    base_out = io.StringIO()
    variant_out = io.StringIO()

    outcome = run_realignment_pair(haplotype_set, context, base_out, variant_out)

    assert outcome.code == ReturnCode.OK
    base_lines = [line.split('\t') for line in base_out.getvalue().splitlines()]
    variant_lines = [line.split('\t') for line in variant_out.getvalue().splitlines()]
    assert len(base_lines) == len(variant_lines) == 2

    variant_index = sorted([haplotype_set.base_haplotypes[0], variant_haplotype]).index(variant_haplotype)
    # Column 4 is the haplotype frequency, column 7 the base sample frequency
    assert float(base_lines[variant_index][4]) < 0.5
    assert float(variant_lines[variant_index][4]) > 0.5
    assert variant_lines[variant_index][7] == base_lines[variant_index][4]
    assert base_lines[variant_index][7] == '.'
    # The reference haplotype is flagged in column 3
    assert variant_lines[1 - variant_index][3] == '1'
