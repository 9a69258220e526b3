"""
SplitCal detector builders and their registration with the host.

Three builders exist, one per active technology. They share the layer-code
interpreter and differ only in the placement strategy handed to it.
"""

from typing import Callable, Dict, Mapping, Optional

from pyg4ometry import geant4 as g4

from splitcal.detector_config import (
    SPLITCAL_DETECTOR_TYPES, TECH_HPL, TECH_THINBAR, TECH_WIDEBAR,
    SplitCalDimensions, check_consistency, get_splitcal_configs,
)
from splitcal.errors import ConfigurationError
from splitcal.geometry.layer_codes import (
    BarPlacementStrategy, FibrePlacementStrategy, LayerCodeInterpreter,
)
from splitcal.geometry.module_factory import BarModuleFactory, FibreModuleFactory, PassiveModuleFactory
from splitcal.geometry.volumes import DetElement, Description, SensitiveDetector, rotation_zyx


DETECTOR_FACTORIES: Dict[str, Callable] = {}


def declare_detelement(type_name):
    """Register a builder under the detector type name used in compact files."""
    def register(func):
        if type_name in DETECTOR_FACTORIES:
            raise ValueError(f"Detector type '{type_name}' is already declared")
        DETECTOR_FACTORIES[type_name] = func
        return func
    return register


def _envelope_volume(description: Description, dims: SplitCalDimensions) -> g4.LogicalVolume:
    env = dims.envelope
    detbox = description.box(dims.name, env.x, env.y, env.z)
    return description.volume(dims.name, detbox, description.air(), env.region, env.limits, env.vis)


def assemble_envelope(description: Description, dims: SplitCalDimensions, detbox_vol: g4.LogicalVolume,
                      verbose=True) -> DetElement:
    """
    Place the filled envelope in its mother volume and register the detector.

    The envelope is rotated by RotationZYX(rot.z, rot.y, rot.x) and moved to
    ``dims.position``; the placement carries the ``system`` volume ID.
    """
    sdet = DetElement(dims.name, dims.det_id)
    mother = description.pick_mother_volume(sdet)
    rot3d = rotation_zyx(dims.rotation.z, dims.rotation.y, dims.rotation.x)
    position = (dims.position.x, dims.position.y, dims.position.z)
    pv = description.place_volume(mother, detbox_vol, f'{dims.name}_envelope', rot3d, position)
    description.add_phys_vol_id(pv, 'system', dims.det_id)
    sdet.set_placement(pv)
    description.add_detector(sdet)
    if verbose:
        print(f"{dims.name}: Detector construction finished.")
    return sdet


def _build_detector(description, dims, sens, technology, place_passive, verbose):
    dims.validate(technology)
    # volume names derive from the detector name; refuse a second registration before building
    description.check_free(dims.name)
    sens.set_type('calorimeter')

    if technology == TECH_HPL:
        factory = FibreModuleFactory(description, dims, sens, verbose=verbose)
        strategy = FibrePlacementStrategy(dims, factory)
    else:
        factory = BarModuleFactory(description, dims, technology, sens, verbose=verbose)
        strategy = BarPlacementStrategy(dims, factory)
    passive = PassiveModuleFactory(description, dims)

    # build every template before the first placement so catalog errors abort early
    factory.module_volume
    if place_passive:
        passive.absorber_volume
        passive.split_volume

    detbox_vol = _envelope_volume(description, dims)
    interpreter = LayerCodeInterpreter(dims, strategy, passive, place_passive=place_passive, verbose=verbose)
    layout = interpreter.run(detbox_vol)

    sdet = assemble_envelope(description, dims, detbox_vol, verbose=verbose)
    sdet.extensions['layout'] = layout
    sdet.extensions['module_factory'] = factory
    return sdet


@declare_detelement('DD4hep_SplitCalWideBars_and_Basis')
def create_widebar_detector(description: Description, dims: SplitCalDimensions, sens: SensitiveDetector,
                            place_passive=True, verbose=True) -> DetElement:
    """Wide-bar layers (codes 1/2); space for every other code is reserved."""
    return _build_detector(description, dims, sens, TECH_WIDEBAR, place_passive, verbose)


@declare_detelement('DD4hep_SplitCalThinBars')
def create_thinbar_detector(description: Description, dims: SplitCalDimensions, sens: SensitiveDetector,
                            place_passive=True, verbose=True) -> DetElement:
    """Thin-bar layers (codes 3/4)."""
    return _build_detector(description, dims, sens, TECH_THINBAR, place_passive, verbose)


@declare_detelement('DD4hep_SplitCalHPLs')
def create_hpl_detector(description: Description, dims: SplitCalDimensions, sens: SensitiveDetector,
                        place_passive=True, verbose=True) -> DetElement:
    """HPL fibre-tracker modules (codes 5/6)."""
    return _build_detector(description, dims, sens, TECH_HPL, place_passive, verbose)


def create_detector(description: Description, type_name, dims: SplitCalDimensions,
                    sens: Optional[SensitiveDetector] = None, **kwargs) -> DetElement:
    try:
        factory = DETECTOR_FACTORIES[type_name]
    except KeyError:
        known = ', '.join(sorted(DETECTOR_FACTORIES))
        raise ConfigurationError(f"{dims.name}: unknown detector type '{type_name}' (known: {known})") from None
    if sens is None:
        sens = SensitiveDetector(dims.readout or dims.name)
    return factory(description, dims, sens, **kwargs)


def build_splitcal(description: Description, configs: Optional[Mapping[str, SplitCalDimensions]] = None,
                   place_passive=True, verbose=True) -> Dict[str, DetElement]:
    """
    Build all SplitCal technologies into ``description``.

    Parameters:
    -----------
    configs : dict, optional
        Dimension set per detector type name (default: get_splitcal_configs())
    place_passive : bool or dict
        Whether builders place absorbers and splits. A dict maps type names
        to a flag; missing types default to True.

    Returns:
    --------
    dict mapping type name to the registered DetElement
    """
    if configs is None:
        configs = get_splitcal_configs()

    fingerprint = check_consistency(configs.values())
    if verbose:
        print(f"SplitCal: {len(configs)} builders share layout fingerprint {fingerprint}")

    elements = {}
    for type_name, dims in configs.items():
        if isinstance(place_passive, Mapping):
            passive_flag = place_passive.get(type_name, True)
        else:
            passive_flag = place_passive
        elements[type_name] = create_detector(description, type_name, dims,
                                              place_passive=passive_flag, verbose=verbose)
    return elements


__all__ = [
    'DETECTOR_FACTORIES', 'SPLITCAL_DETECTOR_TYPES', 'declare_detelement', 'assemble_envelope',
    'create_widebar_detector', 'create_thinbar_detector', 'create_hpl_detector',
    'create_detector', 'build_splitcal',
]
