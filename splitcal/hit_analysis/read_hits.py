import awkward as ak
import numpy as np


# Leaf names of a DDG4 calorimeter hit collection
DDG4_HIT_FIELDS = {
    'x': 'position.fCoordinates.fX',
    'y': 'position.fCoordinates.fY',
    'z': 'position.fCoordinates.fZ',
    'energy': 'energyDeposit',
}

DEFAULT_COLLECTION = 'SHiPHCALHits'
DEFAULT_TREE = 'EVENT'


def hit_branch_names(collection=DEFAULT_COLLECTION, fields=None):
    """Branch path of each hit quantity inside the event tree."""
    fields = fields or DDG4_HIT_FIELDS
    return {key: f'{collection}/{collection}.{leaf}' for key, leaf in fields.items()}


def read_event_hits(events_tree, collection=DEFAULT_COLLECTION, fields=None, entry_stop=None):
    """
    Read the hit positions and deposits of one collection, event by event.

    Parameters:
    -----------
    events_tree : uproot TTree
        Tree holding one entry per event
    collection : str
        Name of the hit collection branch
    fields : dict, optional
        Mapping of 'x', 'y', 'z', 'energy' to leaf names (default: DDG4_HIT_FIELDS)
    entry_stop : int, optional
        Only read the first entry_stop events

    Returns:
    --------
    dict of jagged awkward arrays 'x', 'y', 'z', 'energy' (one list per event)
    """
    branches = hit_branch_names(collection, fields)
    missing = [key for key in ('x', 'y', 'z', 'energy') if key not in branches]
    if missing:
        raise ValueError(f"Hit fields {missing} are not mapped to a leaf")

    arrays = events_tree.arrays(list(branches.values()), entry_stop=entry_stop)
    return {key: arrays[branch] for key, branch in branches.items()}


def read_hits(events_trees, collection=DEFAULT_COLLECTION, fields=None):
    """
    Flattened hit coordinates of several runs.

    Returns:
    --------
    tuple: (x, y, z, energy, r) as flat awkward arrays, r being the distance to the beam axis
    """
    per_tree = [read_event_hits(events_tree, collection, fields) for events_tree in events_trees]
    if not per_tree:
        empty = ak.Array(np.zeros(0))
        return empty, empty, empty, empty, empty

    x_combined = ak.concatenate([ak.flatten(hits['x']) for hits in per_tree])
    y_combined = ak.concatenate([ak.flatten(hits['y']) for hits in per_tree])
    z_combined = ak.concatenate([ak.flatten(hits['z']) for hits in per_tree])
    e_combined = ak.concatenate([ak.flatten(hits['energy']) for hits in per_tree])

    r_combined = np.sqrt(x_combined**2 + y_combined**2)

    return x_combined, y_combined, z_combined, e_combined, r_combined
