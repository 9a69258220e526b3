"""
Per-layer summaries of SplitCal hits.

Every event is reduced to the hit barycentre, spread, multiplicity and
deposited energy of each readout layer, and written one row per event to CSV.
"""

import csv

import awkward as ak
import numpy as np

from splitcal.detector_config import ACTIVE_CODES, SplitCalDimensions
from splitcal.geometry_parsing.geometry_info import get_geometry_info, layer_edges


# Fixed z windows (mm) used by the first digitisation studies
LEGACY_LAYER_Z_RANGES = ((0., 100.), (100., 300.), (300., 400.), (400., 600.), (600., 800.))

SUMMARY_QUANTITIES = ('avx', 'avy', 'rmsx', 'rmsy', 'nhits', 'sumenergydep', 'rmsenergydep')

NO_LAYER = -1


def layer_ranges_from_dimensions(dims: SplitCalDimensions, codes=ACTIVE_CODES):
    """
    z windows (global frame, mm) of the layers with the given codes.

    Parameters:
    -----------
    dims : SplitCalDimensions
        Dimension set the detector was built from
    codes : collection of int
        Layer codes that count as readout layers (default: all active codes)

    Returns:
    --------
    tuple of (z_min, z_max) pairs in stack order
    """
    geometry_info = get_geometry_info(dims)
    return tuple((float(lo), float(hi)) for lo, hi in layer_edges(geometry_info, codes=codes))


def decode_layer(z, ranges=LEGACY_LAYER_Z_RANGES):
    """
    Index of the z window containing ``z``, or -1 if there is none.

    Windows are open intervals, so a hit exactly on a boundary belongs to no
    layer. Accepts a scalar or an array of z values.
    """
    z_arr = np.asarray(z, dtype=float)
    layer = np.full(z_arr.shape, NO_LAYER, dtype=int)
    for i, (z_lo, z_hi) in enumerate(ranges):
        inside = (z_arr > z_lo) & (z_arr < z_hi) & (layer == NO_LAYER)
        layer = np.where(inside, i, layer)
    if layer.ndim == 0:
        return int(layer)
    return layer


def _rms(values):
    if values.size == 0:
        return 0.
    return float(np.sqrt(np.mean(values**2)))


def _mean(values):
    if values.size == 0:
        return float('nan')
    return float(np.mean(values))


def summarize_event(x, y, z, energy, ranges=LEGACY_LAYER_Z_RANGES):
    """
    Reduce the hits of one event to per-layer quantities.

    Parameters:
    -----------
    x, y, z, energy : array-like
        Hit coordinates (mm) and deposited energies of one event
    ranges : sequence of (z_min, z_max)
        Layer windows, see decode_layer

    Returns:
    --------
    tuple: (layers, dropped)
        layers: list with one dict per layer holding SUMMARY_QUANTITIES.
        avx/avy are NaN for a layer without hits; rms values are
        root-mean-square (not standard deviations) and 0 for empty layers.
        dropped: number of hits outside every window
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    energy = np.asarray(energy, dtype=float)
    layer = np.atleast_1d(decode_layer(z, ranges))

    layers = []
    for i in range(len(ranges)):
        mask = layer == i
        layers.append({
            'avx': _mean(x[mask]),
            'avy': _mean(y[mask]),
            'rmsx': _rms(x[mask]),
            'rmsy': _rms(y[mask]),
            'nhits': int(np.count_nonzero(mask)),
            'sumenergydep': float(np.sum(energy[mask])),
            'rmsenergydep': _rms(energy[mask]),
        })

    dropped = int(np.count_nonzero(layer == NO_LAYER))
    return layers, dropped


def summarize_events(hits, ranges=LEGACY_LAYER_Z_RANGES, verbose=True):
    """
    Summarise every event of a hit collection.

    Parameters:
    -----------
    hits : dict
        Jagged arrays 'x', 'y', 'z', 'energy' as returned by read_event_hits
    ranges : sequence of (z_min, z_max)
        Layer windows

    Returns:
    --------
    list of dicts with 'event', 'layers' and 'dropped'
    """
    n_events = len(hits['z'])
    if verbose:
        print(f"--- Starting analysis of {n_events} events ---")

    rows = []
    total_dropped = 0
    for ev in range(n_events):
        layers, dropped = summarize_event(
            ak.to_numpy(hits['x'][ev]),
            ak.to_numpy(hits['y'][ev]),
            ak.to_numpy(hits['z'][ev]),
            ak.to_numpy(hits['energy'][ev]),
            ranges,
        )
        total_dropped += dropped
        rows.append({'event': ev, 'layers': layers, 'dropped': dropped})

    if verbose and total_dropped:
        print(f"Warning: {total_dropped} hits outside all {len(ranges)} layer windows were dropped")
    return rows


def summary_header(n_layers):
    """CSV column names: event, then avx_0, avy_0, ..., rmsenergydep_<n_layers-1>."""
    header = ['event']
    for i in range(n_layers):
        header.extend(f'{quantity}_{i}' for quantity in SUMMARY_QUANTITIES)
    return header


def summary_row(row):
    values = [row['event']]
    for layer in row['layers']:
        values.extend(layer[quantity] for quantity in SUMMARY_QUANTITIES)
    return values


def write_summary_csv(output_file, rows, n_layers):
    """
    Write one line per event, every column separated by a single comma.

    Rows whose layer count differs from ``n_layers`` are rejected.
    """
    with open(output_file, 'w', newline='') as f:
        writer = csv.writer(f)
        writer.writerow(summary_header(n_layers))
        for row in rows:
            if len(row['layers']) != n_layers:
                raise ValueError(
                    f"Event {row['event']} has {len(row['layers'])} layers, expected {n_layers}")
            writer.writerow(summary_row(row))
    print(f"Wrote {len(rows)} events to {output_file}")
