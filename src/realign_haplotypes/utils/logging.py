"""
Logging utilities for RealignHaplotypes.
Records from the driver and from the realignment workers go through one queue to the
console and to a log file in the output directory.
"""

import logging
import sys
import multiprocessing
from pathlib import Path
from logging.handlers import QueueHandler, QueueListener

LOG_FORMAT = '%(asctime)s - %(processName)s - %(name)s - %(levelname)s - %(message)s'
LOG_FILE_NAME = "log.txt"

def _route_root_to_queue(queue):
    root = logging.getLogger()
    for h in root.handlers[:]:
        root.removeHandler(h)
    root.addHandler(QueueHandler(queue))
    root.setLevel(logging.DEBUG)

def setup_logging(output_dir: Path, verbose: bool = False, log_file_name: str = LOG_FILE_NAME):
    """
    Start the queue listener feeding stdout and the run log.

    Per-variant details (alignment counts, reference mappings, extracted reads) are
    logged at DEBUG, so they reach the console only with `verbose`. Python warnings,
    e.g. from Biopython, are captured into the log as well.

    :param output_dir: Directory for the log file, created if missing.
    :param verbose: Show DEBUG records on stdout.
    :param log_file_name: Name of the log file inside output_dir.
    :return: A tuple (queue, listener). Pass the queue to worker_configurer in each
        pool worker and stop the listener when the run ends.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    log_file = output_dir / log_file_name

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(formatter)

    file_handler = logging.FileHandler(log_file, encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)

    # A managed queue can be handed to pool workers through the initializer
    queue = multiprocessing.Manager().Queue(-1)

    listener = QueueListener(queue, console_handler, file_handler, respect_handler_level=True)
    listener.start()

    _route_root_to_queue(queue)
    logging.captureWarnings(True)

    logging.getLogger(__name__).info(f"Logging initialized. Log file: {log_file}")
    return queue, listener

def worker_configurer(queue):
    """
    Send the records of a realignment worker process to the driver's queue.
    """
    _route_root_to_queue(queue)
    logging.captureWarnings(True)
