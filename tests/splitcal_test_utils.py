import copy
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from splitcal.detector_config import SplitCalDimensions, get_splitcal_configs
from splitcal.geometry.volumes import Description, SensitiveDetector


MATERIALS = {'Polystyrene': 'G4_POLYSTYRENE', 'Lead': 'G4_Pb', 'PMMA': 'G4_PLEXIGLASS'}

# Small stack: wide 10, thin 5, HPL module 20, absorber 2 (+1 gap), split 1, envelope 100
SCENARIO_PARAMETERS = {
    'name': 'SplitCalTest',
    'id': 7,
    'layer_codes': '71738',
    'hpln_fibre_layers': 4,
    'box': {'x': 100.0, 'y': 100.0, 'z': 100.0},
    'rotation': {'x': 0.0, 'y': 0.0, 'z': 0.0},
    'position': {'x': 0.0, 'y': 0.0, 'z': 50.0},
    'widebar': {'x': 10.0, 'y': 100.0, 'z': 10.0, 'num_x': 4, 'extrazgap': 1.0, 'material': 'Polystyrene'},
    'thinbar': {'x': 5.0, 'y': 100.0, 'z': 5.0, 'num_x': 8, 'material': 'Polystyrene'},
    'passive_layer': {'x': 100.0, 'y': 100.0, 'z': 2.0, 'material': 'Lead'},
    'split': {'x': 100.0, 'y': 100.0, 'z': 1.0},
    'hplbox': {'x': 20.0, 'y': 100.0, 'z': 20.0},
    'hplfibre': {'rmax': 1.0, 'thickness': 0.1, 'y': 100.0, 'material': 'PMMA'},
    'hplcore': {'material': 'Polystyrene'},
}


def scenario_params(layer_codes=None, **children):
    """Copy of SCENARIO_PARAMETERS; keyword arguments update single child records."""
    params = copy.deepcopy(SCENARIO_PARAMETERS)
    if layer_codes is not None:
        params['layer_codes'] = layer_codes
    for key, value in children.items():
        if isinstance(value, dict) and isinstance(params.get(key), dict):
            params[key].update(value)
        else:
            params[key] = value
    return params


def scenario_dims(layer_codes=None, **children) -> SplitCalDimensions:
    return SplitCalDimensions.from_dict(scenario_params(layer_codes, **children))


def scenario_configs(layer_codes=None, **children):
    return get_splitcal_configs(scenario_params(layer_codes, **children))


def make_description():
    return Description(materials=MATERIALS)


def make_sens(name='SplitCalTestHits'):
    return SensitiveDetector(name)
