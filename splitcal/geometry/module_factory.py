"""
Reusable volume templates for the SplitCal layer technologies.

Each factory builds its element and the module repeating it exactly once;
the layer-code interpreter then places the module template at every slot
belonging to the technology.
"""

import math
from abc import ABC, abstractmethod
from typing import List, Optional

from pyg4ometry import geant4 as g4

from splitcal.detector_config import TECH_THINBAR, TECH_WIDEBAR, SplitCalDimensions
from splitcal.errors import ConfigurationError
from splitcal.geometry.volumes import Description, SensitiveDetector, rotation_zyx


class ModuleFactory(ABC):

    def __init__(self, description: Description, dims: SplitCalDimensions, verbose=False):
        self.description = description
        self.dims = dims
        self.verbose = verbose
        self._module: Optional[g4.LogicalVolume] = None

    @property
    def module_volume(self) -> g4.LogicalVolume:
        if self._module is None:
            self._module = self._build()
        return self._module

    @abstractmethod
    def _build(self) -> g4.LogicalVolume:
        pass


class BarModuleFactory(ModuleFactory):
    """
    A sensitive scintillator bar and the row of ``num_x`` bars it is repeated in.

    The bars are spaced by ``x + x_extra_spacing`` and the row is centred on 0.
    """

    def __init__(self, description, dims, technology, sens: SensitiveDetector, verbose=False):
        if technology not in (TECH_WIDEBAR, TECH_THINBAR):
            raise ConfigurationError(f"{dims.name}: no bar module for technology '{technology}'")
        super().__init__(description, dims, verbose)
        self.technology = technology
        self.sens = sens
        self.bar = dims.widebar if technology == TECH_WIDEBAR else dims.thinbar
        self.element_positions: List[float] = []
        self.row_size = (self.bar.row_width, self.bar.y, self.bar.z)
        self.bar_volume: Optional[g4.LogicalVolume] = None

    def _build(self):
        bar = self.bar
        description = self.description
        name = self.dims.name

        bar_box = description.box(f'{name}_{self.technology}', bar.x, bar.y, bar.z)
        bar_vol = description.volume(f'{name}_{self.technology}', bar_box, description.material(bar.material),
                                     bar.region, bar.limits, bar.vis)
        description.set_sensitive_detector(bar_vol, self.sens)
        self.bar_volume = bar_vol

        if self.verbose:
            print(f"{name}: Bars: x: {bar.x:7.3f} y: {bar.y:7.3f} z: {bar.z:7.3f} "
                  f"mat: {bar.material} vis: {bar.vis} solid: {bar_box.type}")

        prefix = 'wide' if self.technology == TECH_WIDEBAR else 'thin'
        envelope = self.dims.envelope
        row_name = f'{name}_det_{prefix}_layerbox'
        row_vol = description.volume(row_name, description.box(row_name, *self.row_size), description.air(),
                                     envelope.region, envelope.limits, envelope.vis)

        first = -(bar.num_x - 1) * bar.pitch / 2.
        for ix in range(bar.num_x):
            xpos = first + ix * bar.pitch
            pv = description.place_volume(row_vol, bar_vol, f'{row_name}_bar_{ix}', position=(xpos, 0., 0.))
            description.add_phys_vol_id(pv, 'splitcal_bar', ix)
            self.element_positions.append(xpos)

        if self.verbose:
            print(f"{name}: Layer:   nx: {bar.num_x:7d} x spacing: {bar.x_extra_spacing:7.3f}")
        return row_vol


class FibreModuleFactory(ModuleFactory):
    """
    HPL fibre-tracker module.

    Fibres run along y and are packed in rows along x. A "wide" row holds
    floor(hplbox.x / fibre diameter) fibres, a "small" row one fewer, shifted
    by one radius. Rows alternate along the module z, wide rows at even
    layer indices. Only the fibre core is sensitive.
    """

    def __init__(self, description, dims, sens: SensitiveDetector, verbose=False):
        super().__init__(description, dims, verbose)
        if dims.hplfibre is None:
            raise ConfigurationError(f"{dims.name}: missing child record 'hplfibre'")
        self.sens = sens
        self.fibre = dims.hplfibre
        self.wide_positions: List[float] = []
        self.small_positions: List[float] = []
        self.layer_positions: List[float] = []
        self.layer_kinds: List[str] = []
        self.row_volumes: List[g4.LogicalVolume] = []
        self.fibre_volume: Optional[g4.LogicalVolume] = None
        self.core_volume: Optional[g4.LogicalVolume] = None

    @property
    def wide_count(self):
        return int(self.dims.hplbox.x / self.fibre.diameter)

    @property
    def small_count(self):
        return self.wide_count - 1

    @property
    def row_thickness(self):
        return self.fibre.diameter

    def _build(self):
        description = self.description
        dims = self.dims
        fibre = self.fibre
        core = dims.hplcore
        hplbox = dims.hplbox
        name = dims.name

        fibre_tube = description.tube(f'{name}_fibre', 0., fibre.rmax, fibre.length)
        fibre_vol = description.volume(f'{name}_fibre', fibre_tube, description.material(fibre.material),
                                       fibre.region, fibre.limits, fibre.vis)

        core_tube = description.tube(f'{name}_core', 0., fibre.core_radius, fibre.length)
        core_vol = description.volume(f'{name}_core', core_tube, description.material(core.material),
                                      core.region, core.limits, core.vis)
        description.set_sensitive_detector(core_vol, self.sens)
        description.place_volume(fibre_vol, core_vol, f'{name}_core')
        self.fibre_volume = fibre_vol
        self.core_volume = core_vol

        module_box = description.box(f'{name}_hplbox', hplbox.x, hplbox.y, hplbox.z)
        module_vol = description.volume(f'{name}_hplbox', module_box, description.air(),
                                        hplbox.region, hplbox.limits, hplbox.vis)

        wide_row = self._row(f'{name}_splitcal_hplbig_layer', self.wide_count, 0., self.wide_positions)
        small_row = self._row(f'{name}_splitcal_hplsmall_layer', self.small_count, fibre.rmax,
                              self.small_positions)

        for iz in range(dims.hpl_n_fibre_layers):
            z = -hplbox.z / 2. + (iz + 0.5) * fibre.diameter
            row = wide_row if iz % 2 == 0 else small_row
            pv = description.place_volume(module_vol, row, f'{name}_hpl_layer_{iz}', position=(0., 0., z))
            description.add_phys_vol_id(pv, 'splitcal_hpl_layer', iz)
            self.row_volumes.append(row)
            self.layer_positions.append(z)
            self.layer_kinds.append('wide' if iz % 2 == 0 else 'small')

        if self.verbose:
            print(f"{name}: Created {dims.hpl_n_fibre_layers} layers of {self.wide_count} fibres each.")
        return module_vol

    def _row(self, row_name, count, shift, positions):
        description = self.description
        hplbox = self.dims.hplbox
        fibre = self.fibre
        row_box = description.box(row_name, hplbox.x, hplbox.y, self.row_thickness)
        row_vol = description.volume(row_name, row_box, description.air(), vis=fibre.vis)

        # tube axis along y
        rot = rotation_zyx(0., 0., math.pi / 2.)
        for ix in range(count):
            x = -hplbox.x / 2. + (ix + 0.5) * fibre.diameter + shift
            pv = description.place_volume(row_vol, self.fibre_volume, f'{row_name}_fibre_{ix}', rot, (x, 0., 0.))
            description.add_phys_vol_id(pv, 'splitcal_hplfibre', ix)
            positions.append(x)
        return row_vol


class PassiveModuleFactory:
    """Absorber plate and split plane shared by every builder."""

    def __init__(self, description: Description, dims: SplitCalDimensions):
        self.description = description
        self.dims = dims
        self._absorber = None
        self._split = None

    @property
    def absorber_volume(self) -> g4.LogicalVolume:
        if self._absorber is None:
            self._absorber = self._box('passive_layer', self.dims.passive_layer)
        return self._absorber

    @property
    def split_volume(self) -> g4.LogicalVolume:
        if self._split is None:
            self._split = self._box('split', self.dims.split)
        return self._split

    def _box(self, name, record):
        description = self.description
        volume_name = f'{self.dims.name}_{name}'
        material = description.material(record.material)
        return description.volume(volume_name, description.box(volume_name, record.x, record.y, record.z),
                                  material, record.region, record.limits, record.vis)
