import numpy as np

from splitcal.detector_config import SplitCalDimensions
from splitcal.geometry.layer_codes import LayerCodeInterpreter, PlacementStrategy
from splitcal.geometry.module_factory import PassiveModuleFactory
from splitcal.geometry.volumes import rotation_zyx


def _global_z(dims, z_local):
    """z of a point on the stack axis after the envelope placement."""
    rot = rotation_zyx(dims.rotation.z, dims.rotation.y, dims.rotation.x)
    return float(rot[2, 2] * z_local + dims.position.z)


def get_geometry_info(dims: SplitCalDimensions, technology=None, place_passive=True, verbose=False):
    """
    Slot table of a SplitCal stack, computed without building volumes.

    Parameters:
    -----------
    dims : SplitCalDimensions
        Dimension set of the detector
    technology : str, optional
        Builder whose slots (and volume IDs) are reported as placed
    place_passive : bool
        Whether that builder places absorbers and splits
    verbose : bool
        Print a summary

    Returns:
    --------
    dict with 'detector_name', 'technology', 'total_length', 'final_z' and
    'layers' mapping slot index to its z ranges (local and global frame),
    code, content, orientation and volume IDs
    """
    dims.validate(technology)
    # slots of ``technology`` are marked placed, no volumes are built
    strategy = PlacementStrategy(dims, technology)
    passive = PassiveModuleFactory(None, dims) if place_passive else None
    layout = LayerCodeInterpreter(dims, strategy, passive, place_passive=place_passive).run()

    geometry_info = {
        'detector_name': dims.name,
        'technology': technology,
        'total_length': layout.total_length,
        'final_z': layout.z_final,
        'layers': {},
    }

    for slot in layout.slots:
        z_lo = slot.z_center - slot.thickness / 2.
        z_hi = slot.z_center + slot.thickness / 2.
        global_edges = sorted((_global_z(dims, z_lo), _global_z(dims, z_hi)))
        geometry_info['layers'][slot.index] = {
            'code': slot.code,
            'content': slot.content,
            'orientation': slot.orientation,
            'z_start': slot.z_start,
            'z_end': slot.z_end,
            'z_min': z_lo,
            'z_max': z_hi,
            'z_center': slot.z_center,
            'global_z_min': global_edges[0],
            'global_z_max': global_edges[1],
            'placed': slot.placed,
            'vol_ids': dict(slot.vol_ids),
        }

    if verbose:
        print(f"\nGeometry info for {dims.name}:")
        print(f"Stack length: {geometry_info['total_length']:.3f} mm (envelope z {dims.envelope.z:.3f} mm)")
        print("Layers:")
        for layer_id, layer_info in sorted(geometry_info['layers'].items()):
            print(f"  Layer {layer_id}:")
            for key, value in sorted(layer_info.items()):
                if isinstance(value, dict):
                    continue
                print(f"    {key}: {value}")

    return geometry_info


def layer_edges(geometry_info, contents=None, codes=None):
    """
    Global (z_min, z_max) pairs of the slots in stack order.

    Only slots whose content is in ``contents`` and whose code is in
    ``codes`` are kept; None disables the corresponding filter.
    """
    edges = [
        (info['global_z_min'], info['global_z_max'])
        for _, info in sorted(geometry_info['layers'].items())
        if (contents is None or info['content'] in contents)
        and (codes is None or info['code'] in codes)
    ]
    return np.array(edges, dtype=float).reshape(-1, 2)
