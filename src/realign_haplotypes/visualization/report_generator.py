"""
Report generation module for RealignHaplotypes.
Generates the per-variant TSV summary, the best alignment table and the interactive HTML dashboard.
"""

import plotly.graph_objects as go
from jinja2 import Environment, FileSystemLoader
from pathlib import Path
from typing import List, Dict, Any, Tuple
from src.realign_haplotypes.core.models import RealignmentOutcome, ReturnCode, SelectionResult
from src.realign_haplotypes.utils.stats import count_return_codes, format_return_report, summarize_read_depth
import pandas as pd

def outcome_metrics(o: RealignmentOutcome) -> Dict[str, Any]:
    return {
        'variant_id': o.variant_id,
        'return_code': o.code.value,
        'num_alignments': o.num_alignments,
        'num_haplotypes': o.num_haplotypes,
        'num_reads': o.num_reads,
        'message': o.message or ''
    }

def generate_report(
    outcomes: List[RealignmentOutcome],
    output_dir: Path,
    run_parameters: Dict[str, Any] = None
):
    """
    Write summary_report.tsv and report.html for a batch of realignment outcomes.

    :param outcomes: RealignmentOutcome objects in processing order.
    :param output_dir: Directory to save outputs.
    :param run_parameters: Dictionary of configurable parameters used for the run.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    df_summary = pd.DataFrame([outcome_metrics(o) for o in outcomes],
                              columns=['variant_id', 'return_code', 'num_alignments', 'num_haplotypes', 'num_reads', 'message'])
    df_summary.to_csv(output_dir / 'summary_report.tsv', sep='\t', index=False, encoding='utf-8')

    counts = count_return_codes(outcomes)
    depth_stats = summarize_read_depth(outcomes)

    # Outcome breakdown
    fig_codes = go.Figure()
    fig_codes.add_trace(go.Bar(x=[code.value for code in ReturnCode], y=[counts[code] for code in ReturnCode]))
    fig_codes.update_layout(title="Outcomes per Haplotype Set", xaxis_title="Return Code", yaxis_title="Count")
    codes_plot_json = fig_codes.to_json()

    # Read depth distribution, split by outcome
    fig_depth = go.Figure()
    for code in ReturnCode:
        depths = [o.num_reads for o in outcomes if o.code == code]
        if not depths:
            continue
        fig_depth.add_trace(go.Histogram(x=depths, name=code.value, nbinsx=50))
    fig_depth.update_layout(title="Extracted Reads per Haplotype Set", barmode='stack',
                            xaxis_title="Reads", yaxis_title="Count")
    depth_plot_json = fig_depth.to_json()

    template_dir = Path(__file__).parent / 'templates'
    env = Environment(loader=FileSystemLoader(str(template_dir)))
    template = env.get_template('report.html')

    html_content = template.render(
        report_lines=format_return_report(counts),
        counts={code.value: n for code, n in counts.items()},
        depth_stats=depth_stats,
        codes_plot_json=codes_plot_json,
        depth_plot_json=depth_plot_json,
        run_parameters=run_parameters if run_parameters else {}
    )

    with open(output_dir / 'report.html', 'w', encoding='utf-8') as f:
        f.write(html_content)

def write_best_alignments(
    selections: List[Tuple[str, SelectionResult]],
    reference_table,
    output_path: Path
):
    """
    Write the chosen reference placement of each haplotype set.

    :param selections: Tuples (variant_id, SelectionResult).
    :param reference_table: ReferenceTable used to name contigs.
    :param output_path: Path to the output TSV.
    """
    rows = []
    for variant_id, selection in selections:
        alignment = selection.alignment
        rows.append({
            'variant_id': variant_id,
            'return_code': selection.code.value,
            'reference': reference_table.get_read(alignment.reference_id).id if alignment else '',
            'position': alignment.position + 1 if alignment else '',
            'length': alignment.length if alignment else '',
            'strand': ('-' if alignment.is_rc else '+') if alignment else '',
            'alignment_score': alignment.score if alignment else '',
            'mate_score': round(selection.best_score, 4),
            'second_best_mate_score': round(selection.second_best_score, 4)
        })
    df = pd.DataFrame(rows, columns=['variant_id', 'return_code', 'reference', 'position', 'length', 'strand',
                                     'alignment_score', 'mate_score', 'second_best_mate_score'])
    df.to_csv(output_path, sep='\t', index=False, encoding='utf-8')
