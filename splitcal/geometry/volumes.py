"""
Geometry host for the SplitCal builders.

Solids, logical and physical volumes are pyg4ometry objects living in one
registry per description. The host only keeps what a Geant4 volume tree does
not carry itself: volume IDs and numeric transforms of the placements,
sensitive detectors, region/limit/vis tags and the detector elements.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, Iterator, Mapping, Optional, Sequence, Tuple

import numpy as np
from pyg4ometry import gdml
from pyg4ometry import geant4 as g4
from scipy.spatial.transform import Rotation

from splitcal.errors import ConfigurationError


# Catalog name -> Geant4 NIST material
DEFAULT_MATERIALS = {
    'Air': 'G4_AIR',
    'Polystyrene': 'G4_POLYSTYRENE',
    'Lead': 'G4_Pb',
    'PMMA': 'G4_PLEXIGLASS',
}


def rotation_zyx(phi=0.0, theta=0.0, psi=0.0) -> np.ndarray:
    """Rotation matrix Rz(phi) @ Ry(theta) @ Rx(psi)."""
    return Rotation.from_euler("ZYX", [phi, theta, psi]).as_matrix()


def g4_rotation(matrix) -> list:
    """
    [rx, ry, rz] for g4.PhysicalVolume so that the daughter is turned by ``matrix``.

    Geant4 placements carry the inverse (frame) rotation.
    """
    return [float(angle) for angle in Rotation.from_matrix(matrix).inv().as_euler("xyz")]


class SensitiveDetector:
    def __init__(self, name, sd_type=None):
        self.name = name
        self.type = sd_type

    def set_type(self, sd_type):
        self.type = sd_type


@dataclass
class Placement:
    """Numeric transform and volume IDs of one g4.PhysicalVolume."""
    rotation: np.ndarray
    position: np.ndarray
    vol_ids: Dict[str, int] = field(default_factory=dict)


class DetElement:
    def __init__(self, name, det_id):
        self.name = name
        self.id = int(det_id)
        self.placement: Optional[g4.PhysicalVolume] = None
        self.description: Optional['Description'] = None
        self.extensions: Dict[str, object] = {}

    def set_placement(self, physvol: g4.PhysicalVolume):
        self.placement = physvol


class Description:
    """
    Host-side detector description around one pyg4ometry registry.

    Parameters:
    -----------
    materials : mapping, optional
        Catalog name -> Geant4 material name, added to DEFAULT_MATERIALS
    vis_attributes, regions, limits : sequence of str, optional
        Names known to the respective catalogs. Unknown names resolve to None
    world_size : tuple
        Full extent of the world box (mm)
    """

    def __init__(self, materials: Optional[Mapping[str, str]] = None,
                 vis_attributes: Optional[Sequence[str]] = None,
                 regions: Optional[Sequence[str]] = None,
                 limits: Optional[Sequence[str]] = None,
                 world_size=(1e5, 1e5, 1e5)):
        self.registry = g4.Registry()
        self.materials = dict(DEFAULT_MATERIALS)
        self.materials.update(materials or {})
        self.vis_catalog = set(vis_attributes or ())
        self.region_catalog = set(regions or ())
        self.limit_catalog = set(limits or ())

        self.placements: Dict[str, Placement] = {}
        self.attributes: Dict[str, Dict[str, Optional[str]]] = {}
        self.sensitive: Dict[str, SensitiveDetector] = {}
        self.detectors: Dict[str, DetElement] = {}

        wx, wy, wz = (float(v) for v in world_size)
        world = g4.solid.Box('world', wx, wy, wz, self.registry, 'mm')
        self.world_volume = g4.LogicalVolume(world, self.air(), 'world_volume', self.registry)
        self.registry.setWorld(self.world_volume)

    # catalogs

    def material(self, name):
        if name not in self.materials:
            raise ConfigurationError(f"Unknown material '{name}'")
        return self.materials[name]

    def air(self):
        return self.materials['Air']

    def vis_attributes(self, name):
        return name if name in self.vis_catalog else None

    def region(self, name):
        return name if name in self.region_catalog else None

    def limits(self, name):
        return name if name in self.limit_catalog else None

    # volumes

    def box(self, name, x, y, z) -> g4.solid.Box:
        """Box with full side lengths x, y, z (mm)."""
        return g4.solid.Box(name, float(x), float(y), float(z), self.registry, 'mm')

    def tube(self, name, rmin, rmax, length) -> g4.solid.Tubs:
        """Full tube along z with full ``length`` (mm)."""
        return g4.solid.Tubs(name, float(rmin), float(rmax), float(length), 0, 2 * math.pi,
                             self.registry, 'mm')

    def volume(self, name, solid, material, region=None, limits=None, vis=None) -> g4.LogicalVolume:
        lv = g4.LogicalVolume(solid, material, name, self.registry)
        self.set_attributes(lv, region, limits, vis)
        return lv

    def set_attributes(self, volume: g4.LogicalVolume, region=None, limits=None, vis=None):
        self.attributes[volume.name] = {
            'region': self.region(region),
            'limits': self.limits(limits),
            'vis': self.vis_attributes(vis),
        }

    def set_sensitive_detector(self, volume: g4.LogicalVolume, sens: SensitiveDetector):
        self.sensitive[volume.name] = sens

    def is_sensitive(self, volume: g4.LogicalVolume):
        return volume.name in self.sensitive

    def place_volume(self, mother: g4.LogicalVolume, volume: g4.LogicalVolume, name,
                     rotation=None, position=(0.0, 0.0, 0.0)) -> g4.PhysicalVolume:
        """Place ``volume`` in ``mother``, turned by the matrix ``rotation`` and moved to ``position``."""
        rotation = np.eye(3) if rotation is None else np.asarray(rotation, dtype=float)
        position = np.asarray(position, dtype=float)
        physvol = g4.PhysicalVolume(g4_rotation(rotation), [float(v) for v in position],
                                    volume, name, mother, self.registry)
        self.placements[physvol.name] = Placement(rotation, position)
        return physvol

    def placement(self, physvol: g4.PhysicalVolume) -> Placement:
        return self.placements[physvol.name]

    def add_phys_vol_id(self, physvol: g4.PhysicalVolume, name, value):
        vol_ids = self.placement(physvol).vol_ids
        if name in vol_ids:
            raise KeyError(f"Volume ID field '{name}' already set on {physvol.name}")
        vol_ids[name] = int(value)

    def vol_ids(self, physvol: g4.PhysicalVolume) -> Dict[str, int]:
        return self.placement(physvol).vol_ids

    def walk(self, physvol: g4.PhysicalVolume, rotation=None, position=None, ids=None
             ) -> Iterator[Tuple[g4.PhysicalVolume, np.ndarray, np.ndarray, Dict[str, int]]]:
        """
        Depth-first over ``physvol`` and every placement below it.

        Yields (physvol, rotation, position, vol_ids) with the transform
        composed down from the first placement and the volume IDs merged
        along the way.
        """
        placement = self.placement(physvol)
        if rotation is None:
            rotation, position = placement.rotation, placement.position
        else:
            position = rotation @ placement.position + position
            rotation = rotation @ placement.rotation
        merged = dict(ids or {})
        merged.update(placement.vol_ids)
        yield physvol, rotation, position, merged
        for daughter in physvol.logicalVolume.daughterVolumes:
            yield from self.walk(daughter, rotation, position, merged)

    # detectors

    def pick_mother_volume(self, det: DetElement) -> g4.LogicalVolume:
        return self.world_volume

    def check_free(self, name):
        if name in self.detectors:
            raise ConfigurationError(f"Detector '{name}' is already registered")

    def add_detector(self, det: DetElement):
        self.check_free(det.name)
        det.description = self
        self.detectors[det.name] = det
        return det

    def detector(self, name) -> DetElement:
        return self.detectors[name]

    def write_gdml(self, output_file):
        """Write the whole registry, world included, as GDML."""
        writer = gdml.Writer()
        writer.addDetector(self.registry)
        writer.write(output_file)
        print(f"Wrote geometry to {output_file}")
