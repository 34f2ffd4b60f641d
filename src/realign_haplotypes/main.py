"""
Main entry point for the RealignHaplotypes command-line tool.
This module orchestrates the batch: parsing the reference, reads and haplotype sets,
realigning each haplotype set against the base and variant samples in parallel,
and writing the call streams and the final report.
"""

import argparse
import io
import logging
import multiprocessing
import sys
from pathlib import Path
from typing import List, Tuple

from src.realign_haplotypes.core.models import HaplotypeSet, RealignmentOutcome, ReturnCode, SelectionResult
from src.realign_haplotypes.core.parameters import RealignContext, RealignParameters, SelectionPolicy
from src.realign_haplotypes.core.reads import OverDepthError, extract_haplotype_reads
from src.realign_haplotypes.core.realign import run_realignment_pair
from src.realign_haplotypes.core.selection import compute_best_alignment
from src.realign_haplotypes.index.reference import ReferenceIndex
from src.realign_haplotypes.parsers.fasta_parser import parse_reference
from src.realign_haplotypes.parsers.haplotype_parser import parse_haplotype_sets
from src.realign_haplotypes.parsers.read_parser import parse_reads
from src.realign_haplotypes.utils.logging import setup_logging, worker_configurer
from src.realign_haplotypes.utils.stats import count_return_codes, format_return_report
from src.realign_haplotypes.visualization.report_generator import generate_report, write_best_alignments

CALL_COLUMNS = ['variant_id', 'location', 'haplotype', 'is_reference', 'frequency',
                'read_support', 'quality', 'base_frequency']

# Per-worker state, set by the pool initializer
_CONTEXT: RealignContext = None
_POLICY: SelectionPolicy = None

def _init_worker(queue, context: RealignContext, policy: SelectionPolicy):
    global _CONTEXT, _POLICY
    worker_configurer(queue)
    _CONTEXT = context
    _POLICY = policy

def realign_worker(haplotype_set: HaplotypeSet) -> Tuple[RealignmentOutcome, str, str]:
    """
    Realign one haplotype set, capturing both call streams as text.
    """
    base_out = io.StringIO()
    variant_out = io.StringIO()
    outcome = run_realignment_pair(haplotype_set, _CONTEXT, base_out, variant_out)
    return outcome, base_out.getvalue(), variant_out.getvalue()

def select_worker(haplotype_set: HaplotypeSet) -> Tuple[str, SelectionResult]:
    """
    Choose the best reference placement of one haplotype set from its variant read mates.
    """
    parameters = _CONTEXT.parameters
    try:
        _, mates = extract_haplotype_reads(haplotype_set.haplotypes, _CONTEXT.variant_index,
                                           parameters.extraction_kmer(), False, parameters.max_reads,
                                           parameters.max_kmer_occurrences)
        _, rc_mates = extract_haplotype_reads(haplotype_set.haplotypes, _CONTEXT.variant_index,
                                              parameters.extraction_kmer(), True, parameters.max_reads,
                                              parameters.max_kmer_occurrences)
    except OverDepthError:
        return haplotype_set.variant_id, SelectionResult(code=ReturnCode.OVER_DEPTH)

    selection = compute_best_alignment(haplotype_set.haplotypes, mates, rc_mates,
                                       _CONTEXT.reference_index, _CONTEXT.reference_table, _POLICY)
    return haplotype_set.variant_id, selection

def main():
    parser = argparse.ArgumentParser(
        description="RealignHaplotypes: Read realignment scoring of candidate variant haplotypes.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    # Mandatory
    parser.add_argument("-r", "--reference", required=True, help="Reference genome FASTA")
    parser.add_argument("-H", "--haplotypes", required=True,
                        help="TSV with columns id, base_haplotypes, variant_haplotypes (comma separated)")
    parser.add_argument("-v", "--variant-reads", required=True, nargs='+',
                        help="Variant sample reads: one interleaved or two paired FASTA/FASTQ files")

    # Optional
    parser.add_argument("-b", "--base-reads", nargs='+',
                        help="Base sample reads: one interleaved or two paired files. Omit for reference mode")
    parser.add_argument("-o", "--output", default="./output", help="Output directory for results")
    parser.add_argument("--mode", choices=["realign", "best-alignment"], default="realign",
                        help="Realign each haplotype set, or only choose its best reference placement")

    # Configurable
    parser.add_argument("-k", "--kmer", type=int, default=41, help="Read extraction k-mer (capped at 41)")
    parser.add_argument("--reference-kmer", type=int, default=31, help="Seed length for reference alignment")
    parser.add_argument("--realign-mate-pairs", action="store_true",
                        help="Add reference flanks to the haplotypes and realign read mates")
    parser.add_argument("--max-alignments", type=int, default=10, help="Maximum distinct reference placements")
    parser.add_argument("--max-reads", type=int, default=40_000_000_000, help="Maximum extracted reads per haplotype set")
    parser.add_argument("--max-kmer-occurrences", type=int, help="Maximum reads a single k-mer may match")
    parser.add_argument("--enforce-selection-thresholds", action="store_true",
                        help="Reject poorly supported or ambiguous best alignments")
    parser.add_argument("--continue-on-exception", action="store_true",
                        help="Record realignment engine failures and keep going instead of stopping the batch")
    parser.add_argument("--threads", type=int, default=max(1, multiprocessing.cpu_count() - 1),
                        help="Number of CPU cores for parallel processing")
    parser.add_argument("--verbose", action="store_true", help="Show debug messages on stdout")

    args = parser.parse_args()

    output_dir = Path(args.output)
    log_queue, log_listener = setup_logging(output_dir, args.verbose)

    logger = logging.getLogger(__name__)
    aborted = False
    try:
        logger.info("Starting RealignHaplotypes pipeline...")

        # Phase 1: Inputs
        logger.info("Phase 1: Parsing reference, reads and haplotype sets...")
        reference_table = parse_reference(args.reference)
        variant_index = parse_reads(args.variant_reads, name="variant")
        base_index = parse_reads(args.base_reads, name="base") if args.base_reads else None
        haplotype_sets = parse_haplotype_sets(args.haplotypes)
        logger.info(f"Haplotype sets to process: {len(haplotype_sets)}")

        parameters = RealignParameters(
            kmer=args.kmer,
            reference_kmer=args.reference_kmer,
            realign_mate_pairs=args.realign_mate_pairs,
            reference_mode=base_index is None,
            max_alignments=args.max_alignments,
            max_reads=args.max_reads,
            max_kmer_occurrences=args.max_kmer_occurrences
        )
        policy = SelectionPolicy(enforce_thresholds=args.enforce_selection_thresholds)
        if parameters.reference_mode:
            logger.info("No base reads given: running in reference mode")

        # Phase 2: Indexing
        logger.info("Phase 2: Building indices...")
        reference_index = ReferenceIndex(reference_table, k=parameters.reference_kmer)
        variant_index.build(parameters.extraction_kmer())
        if base_index is not None:
            base_index.build(parameters.extraction_kmer())

        context = RealignContext(
            reference_table=reference_table,
            reference_index=reference_index,
            variant_index=variant_index,
            base_index=base_index,
            parameters=parameters
        )

        if args.mode == "best-alignment":
            # Phase 3: Best alignment selection
            logger.info("Phase 3: Selecting best reference placements...")
            with multiprocessing.Pool(args.threads, initializer=_init_worker, initargs=(log_queue, context, policy)) as pool:
                selections = pool.map(select_worker, haplotype_sets)

            for line in format_return_report(count_return_codes(s for _, s in selections)):
                logger.info(line)
            write_best_alignments(selections, reference_table, output_dir / 'best_alignments.tsv')
            logger.info(f"Pipeline complete. Results saved in {output_dir}")
            return

        # Phase 3: Realignment
        logger.info("Phase 3: Realigning haplotype sets...")
        outcomes: List[RealignmentOutcome] = []
        header = '\t'.join(CALL_COLUMNS) + '\n'
        with open(output_dir / 'base_calls.tsv', 'w', encoding='utf-8') as base_out, \
                open(output_dir / 'variant_calls.tsv', 'w', encoding='utf-8') as variant_out:
            base_out.write(header)
            variant_out.write(header)
            with multiprocessing.Pool(args.threads, initializer=_init_worker, initargs=(log_queue, context, policy)) as pool:
                for outcome, base_text, variant_text in pool.imap(realign_worker, haplotype_sets):
                    outcomes.append(outcome)
                    base_out.write(base_text)
                    variant_out.write(variant_text)
                    base_out.flush()
                    variant_out.flush()

                    if outcome.code.is_fatal and not args.continue_on_exception:
                        logger.error(f"Realignment exception for {outcome.variant_id}; stopping the batch")
                        aborted = True
                        break

        # Phase 4: Reporting
        logger.info("Phase 4: Generating reports...")
        for line in format_return_report(count_return_codes(outcomes)):
            logger.info(line)

        run_parameters = {k: v for k, v in vars(args).items()}
        generate_report(outcomes, output_dir, run_parameters)

        logger.info(f"Pipeline complete. Results saved in {output_dir}")
    except Exception as e:
        logger.error(f"Critical failure: {e}")
        sys.exit(1)
    finally:
        log_listener.stop()

    if aborted:
        sys.exit(1)

if __name__ == "__main__":
    main()
