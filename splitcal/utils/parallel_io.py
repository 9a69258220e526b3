"""
Parallel I/O utilities for SplitCal simulation output.

Runs of the same configuration are stored as separate ROOT files; this module
opens many of them at once with a thread pool.
"""

import os
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, List, Optional, Tuple

import uproot


def get_optimal_worker_count(num_files: int, io_bound: bool = True) -> int:
    """Get optimal number of workers based on system resources."""
    cpu_count = os.cpu_count() or 1

    if io_bound:
        # I/O bound: more workers than CPU cores
        optimal = min(32, cpu_count + 4, num_files)
    else:
        optimal = min(cpu_count, num_files)

    return max(1, optimal)


def run_file_path(base_path: str, filename_pattern: str, run_id) -> str:
    """Path of one run, e.g. run_file_path('/data/', 'pi-_sample_{}GeV_{}.root', (10, 3))."""
    if isinstance(run_id, tuple):
        return os.path.join(base_path, filename_pattern.format(*run_id))
    return os.path.join(base_path, filename_pattern.format(run_id))


def open_single_run(args: Tuple[str, str, object, str]) -> Tuple[Optional[object], object, Optional[str]]:
    """
    Open a single ROOT file with error handling.

    Parameters:
    -----------
    args : tuple
        (base_path, filename_pattern, run_id, tree_name) tuple

    Returns:
    --------
    tuple: (tree_object, run_id, error_message)
        tree_object is None if file failed to open
        error_message is None if successful
    """
    base_path, filename_pattern, run_id, tree_name = args

    try:
        filepath = run_file_path(base_path, filename_pattern, run_id)

        if not os.path.exists(filepath):
            return None, run_id, f"File does not exist: {filepath}"

        tree = uproot.open(f"{filepath}:{tree_name}")
        return tree, run_id, None

    except Exception as e:
        return None, run_id, f"Failed to open file for run {run_id}: {str(e)}"


def open_runs_parallel(base_path: str, filename_pattern: str, run_ids: List,
                       tree_name: str = 'EVENT', max_workers: Optional[int] = None,
                       progress_callback: Optional[Callable] = None) -> Tuple[List[object], List]:
    """
    Open multiple ROOT files in parallel.

    Parameters:
    -----------
    base_path : str
        Base directory path for files
    filename_pattern : str
        Filename pattern with {} placeholder(s) for the run id
    run_ids : list
        Run identifiers (a tuple fills several placeholders)
    tree_name : str
        Tree to open in every file
    max_workers : int, optional
        Maximum number of worker threads (default: get_optimal_worker_count)
    progress_callback : callable, optional
        Function to call with progress updates (current_count, total_count)

    Returns:
    --------
    tuple: (successful_trees, failed_runs)
        successful_trees: opened trees in the order of run_ids
        failed_runs: run ids that failed to open
    """
    if not run_ids:
        return [], []

    if max_workers is None:
        max_workers = get_optimal_worker_count(len(run_ids), io_bound=True)

    print(f"Opening {len(run_ids)} files using {max_workers} parallel workers...")

    args_list = [(base_path, filename_pattern, run_id, tree_name) for run_id in run_ids]

    # keep the order of run_ids
    results = [None] * len(run_ids)
    failed_runs = []
    completed_count = 0

    start_time = time.time()

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        future_to_index = {
            executor.submit(open_single_run, args): i
            for i, args in enumerate(args_list)
        }

        for future in as_completed(future_to_index):
            index = future_to_index[future]
            tree, run_id, error = future.result()

            completed_count += 1

            if tree is not None:
                results[index] = tree
            else:
                failed_runs.append(run_id)
                print(f"Warning: {error}")

            if progress_callback:
                progress_callback(completed_count, len(run_ids))

    successful_trees = [tree for tree in results if tree is not None]
    # as_completed order is arbitrary
    failed_runs.sort(key=run_ids.index)

    total_time = time.time() - start_time
    success_rate = len(successful_trees) / len(run_ids) * 100

    print(f"Parallel file opening completed in {total_time:.2f}s")
    print(f"Successfully opened: {len(successful_trees)}/{len(run_ids)} files ({success_rate:.1f}%)")

    if failed_runs:
        print(f"Failed to open {len(failed_runs)} files: {failed_runs[:10]}{'...' if len(failed_runs) > 10 else ''}")

    return successful_trees, failed_runs
