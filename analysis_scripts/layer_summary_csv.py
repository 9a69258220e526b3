"""
Per-layer event summaries of a SplitCal particle-identification sample.

    python analysis_scripts/layer_summary_csv.py pi- 10 3 --base-path /eos/.../PID_NoSplitCal/

reads <base-path>/pi-_sample_10GeV_3.root and writes pi-_sample_10GeV_3.csv next to it.
"""

import argparse
import os

from splitcal.detector_config import get_splitcal_configs
from splitcal.geometry_parsing.compact_parsers import load_splitcal_compact
from splitcal.hit_analysis.layer_summary import (
    LEGACY_LAYER_Z_RANGES, layer_ranges_from_dimensions, summarize_events, write_summary_csv,
)
from splitcal.hit_analysis.read_hits import DEFAULT_COLLECTION, DEFAULT_TREE, read_event_hits
from splitcal.utils.parallel_io import open_runs_parallel


FILENAME_PATTERN = '{}_sample_{}GeV_{}.root'


def main():
    parser = argparse.ArgumentParser(description="Write per-layer hit summaries of one run to CSV")
    parser.add_argument('particle', help="particle name used in the file name, e.g. pi-")
    parser.add_argument('energy', type=int, help="beam energy in GeV")
    parser.add_argument('runid', type=int, nargs='+', help="run number(s)")
    parser.add_argument('--base-path', default='.', help="directory holding the ROOT files")
    parser.add_argument('--output-dir', help="directory for the CSV files (default: base path)")
    parser.add_argument('--collection', default=DEFAULT_COLLECTION)
    parser.add_argument('--tree', default=DEFAULT_TREE)
    parser.add_argument('--compact', help="compact XML the sample was simulated with")
    parser.add_argument('--legacy-ranges', action='store_true',
                        help="use the fixed z windows of the first studies instead of the geometry")
    parser.add_argument('--plot', action='store_true', help="also plot the mean longitudinal profile")
    args = parser.parse_args()

    if args.legacy_ranges:
        ranges = LEGACY_LAYER_Z_RANGES
    else:
        configs = load_splitcal_compact(args.compact) if args.compact else get_splitcal_configs()
        ranges = layer_ranges_from_dimensions(next(iter(configs.values())))
    print(f"Using {len(ranges)} layer windows:")
    for i, (z_lo, z_hi) in enumerate(ranges):
        print(f"  layer {i}: {z_lo:.3f} < z < {z_hi:.3f} mm")

    run_ids = [(args.particle, args.energy, runid) for runid in args.runid]
    trees, failed = open_runs_parallel(args.base_path, FILENAME_PATTERN, run_ids, tree_name=args.tree)
    opened = [run_id for run_id in run_ids if run_id not in failed]

    output_dir = args.output_dir or args.base_path
    for run_id, tree in zip(opened, trees):
        hits = read_event_hits(tree, args.collection)
        rows = summarize_events(hits, ranges)
        stem = os.path.splitext(FILENAME_PATTERN.format(*run_id))[0]
        write_summary_csv(os.path.join(output_dir, stem + '.csv'), rows, len(ranges))

        if args.plot and rows:
            from splitcal.hit_analysis.plotting import plot_layer_energy
            plot_layer_energy(rows, os.path.join(output_dir, stem + '_profile.png'),
                              title=f'{args.particle} {args.energy} GeV, run {run_id[2]}')


if __name__ == "__main__":
    main()
