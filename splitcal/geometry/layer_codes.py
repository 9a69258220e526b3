"""
Layer-code driven layout of the SplitCal stack.

One interpreter walks the code string for every builder. The builder's
technology is supplied as a placement strategy: slots of that technology are
filled, all other slots are only reserved, so every builder advances the
shared z cursor by the same amount.
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from pyg4ometry import geant4 as g4

from splitcal.detector_config import (
    LAYER_CODES, PASSIVE_CODE, SPLIT_CODE, TECH_HPL, VERTICAL, SplitCalDimensions, parse_layer_codes,
)
from splitcal.errors import ConfigurationError, LayoutOverflowError
from splitcal.geometry.module_factory import BarModuleFactory, FibreModuleFactory, PassiveModuleFactory
from splitcal.geometry.volumes import rotation_zyx

__all__ = [
    'STACK_LAYER', 'ABSORBER_OCCURRENCE', 'SPLIT_OCCURRENCE', 'SLOT_INDEX',
    'AddressAssigner', 'Slot', 'StackLayout', 'PlacementStrategy', 'ReservationOnlyStrategy',
    'ModulePlacementStrategy', 'BarPlacementStrategy', 'FibrePlacementStrategy', 'LayerCodeInterpreter',
    'find_overlaps', 'parse_layer_codes',
]

STACK_LAYER = 'splitcal_layer'
ABSORBER_OCCURRENCE = 'splitcal_passivelayer'
SPLIT_OCCURRENCE = 'splitcal_split_layer'
SLOT_INDEX = 'splitcal_slot'

_OVERFLOW_TOLERANCE = 1e-9


class AddressAssigner:
    """Dense per-channel counters owned by a single interpreter run."""

    def __init__(self):
        self._counters: Dict[str, int] = {}

    def next(self, channel):
        value = self._counters.get(channel, 0)
        self._counters[channel] = value + 1
        return value

    def count(self, channel):
        return self._counters.get(channel, 0)


@dataclass
class Slot:
    index: int
    code: int
    content: str
    orientation: Optional[str]
    z_start: float
    z_end: float
    z_center: float
    thickness: float
    placed: bool = False
    vol_ids: Dict[str, int] = field(default_factory=dict)
    placement: Optional[g4.PhysicalVolume] = None

    @property
    def reserved(self):
        return self.z_end - self.z_start


@dataclass
class StackLayout:
    name: str
    technology: Optional[str]
    z_begin: float
    z_final: float
    slots: List[Slot]
    trajectory: List[float]

    @property
    def total_length(self):
        return self.z_final - self.z_begin

    def placed_slots(self, content=None) -> List[Slot]:
        return [slot for slot in self.slots
                if slot.placed and (content is None or slot.content == content)]

    def placed_intervals(self, content=None) -> List[Tuple[float, float]]:
        """z range actually occupied by each placed volume."""
        return [(slot.z_center - slot.thickness / 2., slot.z_center + slot.thickness / 2.)
                for slot in self.placed_slots(content)]


class PlacementStrategy:
    """Decides which codes a builder fills; without a technology it fills nothing."""

    def __init__(self, dims: SplitCalDimensions, technology=None):
        self.dims = dims
        self.technology = technology

    def handles(self, code):
        return self.technology is not None and LAYER_CODES[code][0] == self.technology


class ReservationOnlyStrategy(PlacementStrategy):
    """Fills nothing; used to compute the stack layout without building volumes."""

    def __init__(self, dims):
        super().__init__(dims)


class ModulePlacementStrategy(PlacementStrategy, ABC):
    """Places the module template of a factory at every slot it handles."""

    def __init__(self, dims, technology, factory):
        super().__init__(dims, technology)
        self.factory = factory

    def rotation_for(self, code):
        # "vertical" member of each orientation pair: rows turned by 90 degrees about z
        if LAYER_CODES[code][1] == VERTICAL:
            return rotation_zyx(math.pi / 2., 0., 0.)
        return rotation_zyx(0., 0., 0.)

    @abstractmethod
    def offsets(self) -> Tuple[float, float]:
        pass

    def place(self, mother: g4.LogicalVolume, code, z_center, layer_id, name) -> g4.PhysicalVolume:
        description = self.factory.description
        x, y = self.offsets()
        pv = description.place_volume(mother, self.factory.module_volume, name,
                                      self.rotation_for(code), (x, y, z_center))
        description.add_phys_vol_id(pv, STACK_LAYER, layer_id)
        return pv


class BarPlacementStrategy(ModulePlacementStrategy):

    def __init__(self, dims, factory: BarModuleFactory):
        super().__init__(dims, factory.technology, factory)

    def offsets(self):
        return self.factory.bar.x_offset, self.factory.bar.y_offset


class FibrePlacementStrategy(ModulePlacementStrategy):

    def __init__(self, dims, factory: FibreModuleFactory):
        super().__init__(dims, TECH_HPL, factory)

    def offsets(self):
        return 0., 0.


class LayerCodeInterpreter:
    """
    Walk the layer codes once, from the -z face of the envelope outward.

    Parameters:
    -----------
    dims : SplitCalDimensions
        Dimension set of this builder
    strategy : PlacementStrategy, optional
        Technology filled by this builder; reservation only if None
    passive : PassiveModuleFactory, optional
        Source of absorber and split volumes
    place_passive : bool
        Place absorbers (code 7) and splits (code 8); otherwise only reserve
    """

    def __init__(self, dims: SplitCalDimensions, strategy: Optional[PlacementStrategy] = None,
                 passive: Optional[PassiveModuleFactory] = None, place_passive=True, verbose=False):
        self.dims = dims
        self.strategy = strategy if strategy is not None else ReservationOnlyStrategy(dims)
        self.passive = passive
        self.place_passive = place_passive and passive is not None
        self.verbose = verbose

    def run(self, mother: Optional[g4.LogicalVolume] = None) -> StackLayout:
        """
        Lay out the stack. Volumes are placed into ``mother`` when given,
        otherwise only the slot table (including volume IDs) is computed.
        """
        dims = self.dims
        codes = parse_layer_codes(dims.layer_codes, dims.name)
        address = AddressAssigner()
        if mother is not None and self.strategy.technology is not None \
                and not isinstance(self.strategy, ModulePlacementStrategy):
            raise ConfigurationError(
                f"{dims.name}: {type(self.strategy).__name__} only plans slots and cannot place modules")

        z_layer = -dims.envelope.z / 2.
        z_begin = z_layer
        slots = []
        trajectory = []

        for iz, code in enumerate(codes):
            content, orientation = LAYER_CODES[code]
            reserved = dims.reserved_extent(code)
            thickness = dims.placed_extent(code)
            # centred on the volume thickness; an absorber's extra gap follows it
            z_center = z_layer + thickness / 2.
            slot = Slot(iz, code, content, orientation, z_layer, z_layer + reserved, z_center, thickness)
            name = f'{dims.name}_slot_{iz}'

            if self.strategy.handles(code):
                layer_id = address.next(STACK_LAYER)
                slot.placed = True
                slot.vol_ids = {STACK_LAYER: layer_id}
                if mother is not None:
                    slot.placement = self.strategy.place(mother, code, z_center, layer_id, name)
            elif code in (PASSIVE_CODE, SPLIT_CODE) and self.place_passive:
                channel = ABSORBER_OCCURRENCE if code == PASSIVE_CODE else SPLIT_OCCURRENCE
                slot.placed = True
                # dense occurrence plus the position in the code string
                slot.vol_ids = {channel: address.next(channel), SLOT_INDEX: iz}
                if mother is not None:
                    description = self.passive.description
                    volume = (self.passive.absorber_volume if code == PASSIVE_CODE
                              else self.passive.split_volume)
                    pv = description.place_volume(mother, volume, name, position=(0., 0., z_center))
                    for field_name, value in slot.vol_ids.items():
                        description.add_phys_vol_id(pv, field_name, value)
                    slot.placement = pv

            z_layer += reserved
            slots.append(slot)
            trajectory.append(z_layer)
            if self.verbose:
                print(f"{dims.name}: code {code} slot {iz} -> z_layer {z_layer:.3f}")

        half = dims.envelope.z / 2.
        if z_layer > half + _OVERFLOW_TOLERANCE * max(1.0, abs(half)):
            raise LayoutOverflowError(
                f"{dims.name}: layout overflow, stack ends at z={z_layer:.6g} mm "
                f"beyond the envelope half-length {half:.6g} mm "
                f"(stack length {z_layer - z_begin:.6g} mm, envelope z {dims.envelope.z:.6g} mm)")

        return StackLayout(
            name=dims.name,
            technology=self.strategy.technology,
            z_begin=z_begin,
            z_final=z_layer,
            slots=slots,
            trajectory=trajectory,
        )


def find_overlaps(layouts, contents=None):
    """
    Pairs of placed slots from different layouts whose z ranges intersect.

    Parameters:
    -----------
    layouts : iterable of StackLayout
        Results of one interpreter run per builder of the same detector
    contents : collection of str, optional
        Only consider slots with these contents (default: the builders' own
        technologies, i.e. absorbers and splits are left out)

    Returns:
    --------
    list of (Slot, Slot) tuples
    """
    placed = []
    for owner, layout in enumerate(layouts):
        wanted = contents if contents is not None else (layout.technology,)
        for slot in layout.placed_slots():
            if slot.content in wanted:
                placed.append((owner, slot))

    overlaps = []
    for i, (owner_a, slot_a) in enumerate(placed):
        lo_a, hi_a = slot_a.z_center - slot_a.thickness / 2., slot_a.z_center + slot_a.thickness / 2.
        for owner_b, slot_b in placed[i + 1:]:
            if owner_a == owner_b:
                continue
            lo_b, hi_b = slot_b.z_center - slot_b.thickness / 2., slot_b.z_center + slot_b.thickness / 2.
            if min(hi_a, hi_b) - max(lo_a, lo_b) > _OVERFLOW_TOLERANCE:
                overlaps.append((slot_a, slot_b))
    return overlaps
