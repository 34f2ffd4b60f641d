import subprocess
import sys
from pathlib import Path

import pandas as pd
import pytest

from conftest import HAP_END, HAP_START, make_read_pairs, random_sequence, substitute

REPO_ROOT = Path(__file__).resolve().parent.parent

def write_fasta(path, records):
    with open(path, 'w') as f:
        for record in records:
            f.write(f">{record.id}\n{record.seq}\n")

@pytest.fixture
def inputs(tmp_path):
    reference = random_sequence(3000, seed=7)
    base_haplotype = reference[HAP_START:HAP_END]
    variant_haplotype = substitute(base_haplotype, 40)

    ref_path = tmp_path / "ref.fa"
    ref_path.write_text(f">chr1\n{reference}\n")

    haplotypes_path = tmp_path / "haplotypes.tsv"
    haplotypes_path.write_text(
        "id\tbase_haplotypes\tvariant_haplotypes\n"
        f"var1\t{base_haplotype}\t{variant_haplotype}\n"
        # No k-mer of this haplotype is in the reference
        f"var2\t\t{random_sequence(120, seed=99)}\n"
    )

    base_path = tmp_path / "base.fa"
    variant_path = tmp_path / "variant.fa"
    write_fasta(base_path, make_read_pairs(base_haplotype, 'base'))
    write_fasta(variant_path, make_read_pairs(variant_haplotype, 'variant'))

    return {
        'reference': ref_path,
        'haplotypes': haplotypes_path,
        'base': base_path,
        'variant': variant_path,
        'output': tmp_path / "out",
    }

def run_cli(inputs, *extra):
    cmd = [
        sys.executable, "-m", "src.realign_haplotypes.main",
        "-r", str(inputs['reference']),
        "-H", str(inputs['haplotypes']),
        "-v", str(inputs['variant']),
        "-o", str(inputs['output']),
        "-k", "31",
        "--threads", "1",
        *extra
    ]
    return subprocess.run(cmd, capture_output=True, text=True, cwd=REPO_ROOT)

def test_full_pipeline(inputs):
    result = run_cli(inputs, "-b", str(inputs['base']))

    assert result.returncode == 0, result.stderr
    output_dir = inputs['output']
    assert (output_dir / "log.txt").exists()
    assert (output_dir / "report.html").exists()

    summary = pd.read_csv(output_dir / "summary_report.tsv", sep='\t')
    assert list(summary['variant_id']) == ['var1', 'var2']
    assert list(summary['return_code']) == ['OK', 'NO_ALIGNMENT']

    base_calls = pd.read_csv(output_dir / "base_calls.tsv", sep='\t', keep_default_na=False)
    variant_calls = pd.read_csv(output_dir / "variant_calls.tsv", sep='\t', keep_default_na=False)
    # One line per flanked haplotype, only for the realigned set
    assert len(base_calls) == len(variant_calls) == 2
    assert set(variant_calls['variant_id']) == {'var1'}
    assert all(base_calls['base_frequency'] == '.')

    variant_row = variant_calls[variant_calls['is_reference'] == 0].iloc[0]
    assert variant_row['frequency'] > 0.5

    assert "Total variants processed: 2" in result.stdout

def test_reference_mode(inputs):
    result = run_cli(inputs)

    assert result.returncode == 0, result.stderr
    base_calls = pd.read_csv(inputs['output'] / "base_calls.tsv", sep='\t')
    variant_calls = pd.read_csv(inputs['output'] / "variant_calls.tsv", sep='\t')
    assert base_calls.empty
    assert len(variant_calls) == 2

def test_best_alignment_mode(inputs):
    result = run_cli(inputs, "--mode", "best-alignment")

    assert result.returncode == 0, result.stderr
    best = pd.read_csv(inputs['output'] / "best_alignments.tsv", sep='\t', keep_default_na=False, dtype=str)
    row = best[best['variant_id'] == 'var1'].iloc[0]
    assert row['return_code'] == 'OK'
    assert row['reference'] == 'chr1'
    assert row['position'] == str(HAP_START + 1)
    assert row['strand'] == '+'

def test_missing_reference_fails(inputs, tmp_path):
    inputs['reference'] = tmp_path / "missing.fa"
    result = run_cli(inputs)
    assert result.returncode == 1
