import copy
import hashlib
from dataclasses import dataclass, field
from typing import Dict, Iterable, Mapping, Optional, Tuple

from splitcal.errors import ConfigurationError


TECH_WIDEBAR = 'widebar'
TECH_THINBAR = 'thinbar'
TECH_HPL = 'hpl'
TECHNOLOGIES = (TECH_WIDEBAR, TECH_THINBAR, TECH_HPL)

PASSIVE = 'passive'
SPLIT = 'split'

VERTICAL = 'vertical'
HORIZONTAL = 'horizontal'

# code -> (layer content, orientation of the placed module)
LAYER_CODES = {
    1: (TECH_WIDEBAR, VERTICAL),
    2: (TECH_WIDEBAR, HORIZONTAL),
    3: (TECH_THINBAR, VERTICAL),
    4: (TECH_THINBAR, HORIZONTAL),
    5: (TECH_HPL, VERTICAL),
    6: (TECH_HPL, HORIZONTAL),
    7: (PASSIVE, None),
    8: (SPLIT, None),
}
ACTIVE_CODES = (1, 2, 3, 4, 5, 6)
PASSIVE_CODE = 7
SPLIT_CODE = 8

_TOLERANCE = 1e-9


def parse_layer_codes(layer_codes, name='SplitCal') -> Tuple[int, ...]:
    """
    Turn a layer-code string such as "7172" into a tuple of integer codes.

    Parameters:
    -----------
    layer_codes : str
        One digit per axial slot, each between 1 and 8
    name : str
        Detector name used in error messages

    Returns:
    --------
    tuple of int
    """
    if not isinstance(layer_codes, str):
        raise ConfigurationError(f"{name}: layer_codes must be a string, got {type(layer_codes).__name__}")
    text = layer_codes.strip()
    if not text:
        raise ConfigurationError(f"{name}: layer_codes is empty")

    codes = []
    for index, char in enumerate(text):
        if char not in '12345678':
            raise ConfigurationError(
                f"{name}: invalid layer code {char!r} at position {index} of {text!r} (allowed: 1-8)")
        codes.append(int(char))
    return tuple(codes)


@dataclass(frozen=True)
class Vector3:
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0


@dataclass(frozen=True)
class BoxRecord:
    """Full extents of a box-shaped element plus its catalog references."""
    x: float
    y: float
    z: float
    material: str = 'Air'
    region: Optional[str] = None
    limits: Optional[str] = None
    vis: Optional[str] = None


@dataclass(frozen=True)
class BarRecord(BoxRecord):
    """A scintillator bar and the row it is repeated in."""
    num_x: int = 1
    x_extra_spacing: float = 0.0
    x_offset: float = 0.0
    y_offset: float = 0.0
    extrazgap: float = 0.0

    @property
    def pitch(self):
        return self.x + self.x_extra_spacing

    @property
    def row_width(self):
        return self.num_x * self.x + (self.num_x - 1) * self.x_extra_spacing


@dataclass(frozen=True)
class FibreRecord:
    """Outer rod of an HPL fibre. ``length`` is the host's ``y`` attribute."""
    rmax: float
    thickness: float
    length: float
    material: str = 'Air'
    region: Optional[str] = None
    limits: Optional[str] = None
    vis: Optional[str] = None

    @property
    def diameter(self):
        return 2.0 * self.rmax

    @property
    def core_radius(self):
        return self.rmax - self.thickness


@dataclass(frozen=True)
class CoreRecord:
    material: str = 'Air'
    region: Optional[str] = None
    limits: Optional[str] = None
    vis: Optional[str] = None


@dataclass(frozen=True)
class SplitCalDimensions:
    """
    Resolved parameters of one SplitCal builder invocation.

    All lengths are full extents in mm. The layer-code string and the
    z-extents of every layer type must be identical across the three
    builders of one detector, see ``check_consistency``.
    """
    name: str
    det_id: int
    envelope: BoxRecord
    widebar: BarRecord
    thinbar: BarRecord
    passive_layer: BoxRecord
    split: BoxRecord
    hplbox: BoxRecord
    layer_codes: str
    rotation: Vector3 = field(default_factory=Vector3)
    position: Vector3 = field(default_factory=Vector3)
    hplfibre: Optional[FibreRecord] = None
    hplcore: CoreRecord = field(default_factory=CoreRecord)
    hpl_n_fibre_layers: int = 0
    num_layers: Optional[int] = None
    readout: Optional[str] = None

    @property
    def codes(self):
        return parse_layer_codes(self.layer_codes, self.name)

    @property
    def num_z(self):
        return len(self.codes)

    @property
    def extrazgap(self):
        # every builder reads the gap from the wide-bar record
        return self.widebar.extrazgap

    def reserved_extent(self, code):
        """Axial span every builder advances the cursor by for ``code``."""
        if code in (1, 2):
            return self.widebar.z
        if code in (3, 4):
            return self.thinbar.z
        if code in (5, 6):
            return self.hplbox.z
        if code == PASSIVE_CODE:
            return self.passive_layer.z + self.extrazgap
        if code == SPLIT_CODE:
            return self.split.z
        raise ConfigurationError(f"{self.name}: unknown layer code {code!r}")

    def placed_extent(self, code):
        """Thickness of the volume placed for ``code`` (absorbers exclude the extra gap)."""
        if code == PASSIVE_CODE:
            return self.passive_layer.z
        return self.reserved_extent(code)

    def total_stack_length(self):
        return sum(self.reserved_extent(code) for code in self.codes)

    def shared_parameters(self) -> Dict[str, object]:
        """Parameters all three builders of one detector must agree on."""
        shared = {
            'layer_codes': self.layer_codes.strip(),
            'envelope_z': float(self.envelope.z),
            'widebar_z': float(self.widebar.z),
            'thinbar_z': float(self.thinbar.z),
            'hplbox_z': float(self.hplbox.z),
            'passive_layer_z': float(self.passive_layer.z),
            'extrazgap': float(self.extrazgap),
            'split_z': float(self.split.z),
        }
        # envelope placement, so the stacks line up in the world frame
        for axis in ('x', 'y', 'z'):
            shared[f'position_{axis}'] = float(getattr(self.position, axis)) + 0.
            shared[f'rotation_{axis}'] = float(getattr(self.rotation, axis)) + 0.
        return shared

    def fingerprint(self):
        shared = self.shared_parameters()
        text = '|'.join(f'{key}={shared[key]!r}' for key in sorted(shared))
        return hashlib.sha1(text.encode('utf-8')).hexdigest()

    def validate(self, technology=None):
        """
        Check the parameters needed to build ``technology`` (all of them if None).

        Raises ConfigurationError describing the first problem found.
        """
        codes = parse_layer_codes(self.layer_codes, self.name)
        if self.num_layers is not None and self.num_layers != len(codes):
            raise ConfigurationError(
                f"{self.name}: layer_codes has {len(codes)} slots but {self.num_layers} were declared")

        for label, record in (('box', self.envelope), ('widebar', self.widebar),
                              ('thinbar', self.thinbar), ('passive_layer', self.passive_layer),
                              ('split', self.split), ('hplbox', self.hplbox)):
            _check_extents(self.name, label, record)

        if self.extrazgap < 0:
            raise ConfigurationError(f"{self.name}: widebar.extrazgap must not be negative ({self.extrazgap})")

        bars = {TECH_WIDEBAR: self.widebar, TECH_THINBAR: self.thinbar}
        for label, bar in bars.items():
            if technology not in (None, label):
                continue
            if bar.num_x < 1:
                raise ConfigurationError(f"{self.name}: {label}.num_x must be at least 1 ({bar.num_x})")
            if bar.x_extra_spacing < 0:
                raise ConfigurationError(
                    f"{self.name}: {label}.x_extra_spacing must not be negative ({bar.x_extra_spacing})")

        if technology in (None, TECH_HPL):
            self._validate_fibres()

    def _validate_fibres(self):
        fibre = self.hplfibre
        if fibre is None:
            raise ConfigurationError(f"{self.name}: missing child record 'hplfibre'")
        if fibre.rmax <= 0 or fibre.length <= 0:
            raise ConfigurationError(
                f"{self.name}: hplfibre needs positive rmax and y (got rmax={fibre.rmax}, y={fibre.length})")
        if not 0 <= fibre.thickness < fibre.rmax:
            raise ConfigurationError(
                f"{self.name}: hplfibre.thickness must be in [0, rmax) (got {fibre.thickness}, rmax={fibre.rmax})")
        if self.hpl_n_fibre_layers < 1:
            raise ConfigurationError(
                f"{self.name}: hpln_fibre_layers must be at least 1 ({self.hpl_n_fibre_layers})")
        if int(self.hplbox.x / fibre.diameter) < 1:
            raise ConfigurationError(
                f"{self.name}: hplbox.x ({self.hplbox.x}) is narrower than one fibre ({fibre.diameter})")
        stack = self.hpl_n_fibre_layers * fibre.diameter
        if stack > self.hplbox.z * (1 + _TOLERANCE) + _TOLERANCE:
            raise ConfigurationError(
                f"{self.name}: {self.hpl_n_fibre_layers} fibre layers ({stack} mm) "
                f"do not fit in hplbox.z ({self.hplbox.z} mm)")

    @classmethod
    def from_dict(cls, params, name=None, det_id=None):
        """
        Build a dimension set from the host's resolved parameter record.

        Parameters:
        -----------
        params : dict
            Nested mapping with the child records ``box``, ``rotation``,
            ``position``, ``widebar``, ``thinbar``, ``passive_layer``,
            ``split``, ``hplbox`` and optionally ``hplfibre`` / ``hplcore``,
            plus ``layer_codes`` and ``hpln_fibre_layers``
        name, det_id : optional
            Override the detector name / id found in ``params``
        """
        name = name if name is not None else params.get('name', 'SplitCal')
        det_id = det_id if det_id is not None else params.get('id', 0)

        fibre = None
        if params.get('hplfibre') is not None:
            fibre_params = params['hplfibre']
            fibre = FibreRecord(
                rmax=_number(fibre_params, 'rmax', name, 'hplfibre'),
                thickness=_number(fibre_params, 'thickness', name, 'hplfibre', default=0.0),
                length=_number(fibre_params, 'y', name, 'hplfibre'),
                **_catalog_refs(fibre_params),
            )

        if 'layer_codes' not in params:
            raise ConfigurationError(f"{name}: missing attribute 'layer_codes'")

        num_layers = params.get('num_layers')
        return cls(
            name=name,
            det_id=_to_int(det_id, name, 'id'),
            envelope=_box_record(params, 'box', name),
            widebar=_bar_record(params, 'widebar', name),
            thinbar=_bar_record(params, 'thinbar', name),
            passive_layer=_box_record(params, 'passive_layer', name),
            split=_box_record(params, 'split', name),
            hplbox=_box_record(params, 'hplbox', name),
            layer_codes=str(params['layer_codes']).strip(),
            rotation=_vector(params.get('rotation'), name, 'rotation'),
            position=_vector(params.get('position'), name, 'position'),
            hplfibre=fibre,
            hplcore=CoreRecord(**_catalog_refs(params.get('hplcore') or {})),
            hpl_n_fibre_layers=_to_int(params.get('hpln_fibre_layers', 0), name, 'hpln_fibre_layers'),
            num_layers=None if num_layers is None else _to_int(num_layers, name, 'num_layers'),
            readout=params.get('readout'),
        )


def _check_extents(name, label, record):
    for axis in ('x', 'y', 'z'):
        value = getattr(record, axis)
        if value is None or value <= 0:
            raise ConfigurationError(f"{name}: {label}.{axis} must be positive (got {value})")


_REQUIRED = object()


def _number(record, attr, name, child, default=_REQUIRED):
    if attr not in record or record[attr] is None:
        if default is _REQUIRED:
            raise ConfigurationError(f"{name}: missing attribute '{attr}' in '{child}'")
        return default
    try:
        return float(record[attr])
    except (TypeError, ValueError):
        raise ConfigurationError(
            f"{name}: attribute '{attr}' in '{child}' is not a number ({record[attr]!r})") from None


def _to_int(value, name, attr):
    try:
        as_float = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name}: attribute '{attr}' is not an integer ({value!r})") from None
    if as_float != int(as_float):
        raise ConfigurationError(f"{name}: attribute '{attr}' is not an integer ({value!r})")
    return int(as_float)


def _child(params, key, name):
    child = params.get(key)
    if child is None:
        raise ConfigurationError(f"{name}: missing child record '{key}'")
    return child


def _catalog_refs(record):
    return {
        'material': record.get('material', 'Air'),
        'region': record.get('region'),
        'limits': record.get('limits'),
        'vis': record.get('vis'),
    }


def _box_record(params, key, name):
    record = _child(params, key, name)
    return BoxRecord(
        x=_number(record, 'x', name, key),
        y=_number(record, 'y', name, key),
        z=_number(record, 'z', name, key),
        **_catalog_refs(record),
    )


def _bar_record(params, key, name):
    record = _child(params, key, name)
    return BarRecord(
        x=_number(record, 'x', name, key),
        y=_number(record, 'y', name, key),
        z=_number(record, 'z', name, key),
        num_x=_to_int(record.get('num_x', 1), name, f'{key}.num_x'),
        x_extra_spacing=_number(record, 'x_extra_spacing', name, key, default=0.0),
        x_offset=_number(record, 'x_offset', name, key, default=0.0),
        y_offset=_number(record, 'y_offset', name, key, default=0.0),
        extrazgap=_number(record, 'extrazgap', name, key, default=0.0),
        **_catalog_refs(record),
    )


def _vector(record, name, key):
    if record is None:
        return Vector3()
    return Vector3(
        x=_number(record, 'x', name, key, default=0.0),
        y=_number(record, 'y', name, key, default=0.0),
        z=_number(record, 'z', name, key, default=0.0),
    )


def check_consistency(dimension_sets: Iterable[SplitCalDimensions]) -> Optional[str]:
    """
    Verify that the builders of one detector share layer codes and z-extents.

    Returns the common fingerprint, or None when no dimension set is given.
    """
    dimension_sets = list(dimension_sets)
    if not dimension_sets:
        return None

    reference = dimension_sets[0]
    expected = reference.fingerprint()
    for dims in dimension_sets[1:]:
        if dims.fingerprint() == expected:
            continue
        ours = reference.shared_parameters()
        theirs = dims.shared_parameters()
        differing = [key for key in sorted(ours) if ours[key] != theirs[key]]
        details = ', '.join(f"{key}: {ours[key]!r} != {theirs[key]!r}" for key in differing)
        raise ConfigurationError(
            f"{dims.name} is inconsistent with {reference.name} ({details})")
    return expected


# Reference SplitCal configuration, lengths in mm
DEFAULT_SPLITCAL_PARAMETERS = {
    'name': 'SplitCal',
    'id': 30,
    'layer_codes': '7172717273745687172',
    'hpln_fibre_layers': 6,
    'readout': 'SplitCalHits',
    'box': {'x': 1200.0, 'y': 1200.0, 'z': 400.0, 'vis': 'InvisibleWithDaughters'},
    'rotation': {'x': 0.0, 'y': 0.0, 'z': 0.0},
    'position': {'x': 0.0, 'y': 0.0, 'z': 200.0},
    'widebar': {
        'x': 60.0, 'y': 1200.0, 'z': 10.0, 'num_x': 20,
        'x_extra_spacing': 0.0, 'x_offset': 0.0, 'y_offset': 0.0, 'extrazgap': 1.0,
        'material': 'Polystyrene', 'vis': 'SplitCalWideBarVis',
    },
    'thinbar': {
        'x': 10.0, 'y': 1200.0, 'z': 5.0, 'num_x': 120,
        'x_extra_spacing': 0.0, 'x_offset': 0.0, 'y_offset': 0.0,
        'material': 'Polystyrene', 'vis': 'SplitCalThinBarVis',
    },
    'passive_layer': {'x': 1200.0, 'y': 1200.0, 'z': 20.0, 'material': 'Lead', 'vis': 'SplitCalAbsorberVis'},
    'split': {'x': 1200.0, 'y': 1200.0, 'z': 10.0, 'material': 'Air', 'vis': 'SplitCalSplitVis'},
    'hplbox': {'x': 1200.0, 'y': 1200.0, 'z': 10.0, 'vis': 'InvisibleWithDaughters'},
    'hplfibre': {'rmax': 0.5, 'thickness': 0.05, 'y': 1200.0, 'material': 'PMMA', 'vis': 'SplitCalFibreVis'},
    'hplcore': {'material': 'Polystyrene', 'vis': 'SplitCalCoreVis'},
}

SPLITCAL_DETECTOR_TYPES = {
    'DD4hep_SplitCalWideBars_and_Basis': ('SplitCalWideBars', 30, TECH_WIDEBAR),
    'DD4hep_SplitCalThinBars': ('SplitCalThinBars', 31, TECH_THINBAR),
    'DD4hep_SplitCalHPLs': ('SplitCalHPLs', 32, TECH_HPL),
}


def get_splitcal_configs(params: Optional[Mapping] = None) -> Dict[str, SplitCalDimensions]:
    """One dimension set per builder type, all sharing ``params``."""
    params = copy.deepcopy(dict(params) if params is not None else DEFAULT_SPLITCAL_PARAMETERS)

    configs = {}
    for type_name, (name, det_id, _) in SPLITCAL_DETECTOR_TYPES.items():
        configs[type_name] = SplitCalDimensions.from_dict(params, name=name, det_id=det_id)
    return configs
