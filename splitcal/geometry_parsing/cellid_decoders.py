from typing import Dict, Iterator, Tuple

import numpy as np

from splitcal.detector_config import TECH_HPL, TECH_THINBAR, TECH_WIDEBAR


# Readout descriptors of the sensitive SplitCal elements
SPLITCAL_READOUTS = {
    TECH_WIDEBAR: "system:8,splitcal_layer:8,splitcal_bar:16",
    TECH_THINBAR: "system:8,splitcal_layer:8,splitcal_bar:16",
    TECH_HPL: "system:8,splitcal_layer:8,splitcal_hpl_layer:8,splitcal_hplfibre:16",
}


class BitFieldElement:
    """One named field of a cellID"""
    def __init__(self, name, offset, width):
        """
        Args:
            name: Field name
            offset: Bit offset
            width: Bit width (negative means signed)
        """
        self.name = name
        self.offset = offset
        self.width = abs(width)
        self.is_signed = width < 0

        self.mask = ((1 << self.width) - 1) << offset

        if self.is_signed:
            self.min_val = (1 << (self.width - 1)) - (1 << self.width)
            self.max_val = (1 << (self.width - 1)) - 1
        else:
            self.min_val = 0
            self.max_val = (1 << self.width) - 1

    def value(self, cellid):
        """Extract this field's value from a cellID"""
        cellid = int(cellid)

        val = (cellid & self.mask) >> self.offset
        if self.is_signed and (val & (1 << (self.width - 1))):
            val -= (1 << self.width)
        return val

    def set(self, cellid, value):
        """Return ``cellid`` with this field replaced by ``value``"""
        value = int(value)
        if not self.min_val <= value <= self.max_val:
            raise ValueError(
                f"Value {value} out of range [{self.min_val}, {self.max_val}] for field '{self.name}'")
        raw = value & ((1 << self.width) - 1)
        return (int(cellid) & ~self.mask) | (raw << self.offset)


class BitFieldCoder:
    """Encode and decode cellIDs from a field descriptor"""
    def __init__(self, descriptor):
        """
        Args:
            descriptor: Field descriptor string e.g. "system:8,splitcal_layer:8,splitcal_bar:16"
        """
        self.descriptor = descriptor
        self.fields = []
        self.field_map = {}

        offset = 0
        for field_desc in descriptor.split(','):
            parts = field_desc.strip().split(':')

            if len(parts) == 2:
                # name:width
                name = parts[0]
                width = int(parts[1])
                this_offset = offset
                offset += abs(width)
            elif len(parts) == 3:
                # name:offset:width
                name = parts[0]
                this_offset = int(parts[1])
                width = int(parts[2])
                offset = this_offset + abs(width)
            else:
                raise ValueError(f"Invalid field descriptor: {field_desc}")

            if name in self.field_map:
                raise ValueError(f"Duplicate field '{name}' in descriptor {descriptor}")
            field = BitFieldElement(name, this_offset, width)
            self.fields.append(field)
            self.field_map[name] = len(self.fields) - 1

    def get_field(self, name):
        """Get a field by name"""
        if name not in self.field_map:
            raise KeyError(f"Unknown field: {name}")
        return self.fields[self.field_map[name]]

    def encode(self, values):
        """Build a cellID from a {field: value} mapping; unset fields are 0"""
        cellid = 0
        for name, value in values.items():
            cellid = self.get_field(name).set(cellid, value)
        return cellid

    def decode(self, cellid):
        """Decode all fields from a cellID"""
        cellid = int(cellid)
        return {field.name: field.value(cellid) for field in self.fields}


def create_decoder(technology):
    """Create the decoder for one SplitCal technology"""
    if technology not in SPLITCAL_READOUTS:
        raise ValueError(f"Unknown SplitCal technology: {technology}")
    return BitFieldCoder(SPLITCAL_READOUTS[technology])


def decode_splitcal_cellid(cellID, technology):
    """
    Decode a SplitCal cellID.

    Args:
        cellID: Integer cellID to decode
        technology: 'widebar', 'thinbar' or 'hpl'

    Returns:
        Dictionary with decoded fields
    """
    decoder = create_decoder(technology)
    try:
        return decoder.decode(int(cellID))
    except Exception as e:
        print(f"Error decoding cellID {cellID}: {e}")
        print(f"Binary: {format(int(cellID), '064b' if cellID > 0xFFFFFFFF else '032b')}")
        raise


def iter_sensitive_cells(det_element) -> Iterator[Tuple[Dict[str, int], np.ndarray]]:
    """
    Walk a placed SplitCal detector and yield every sensitive element.

    Yields:
        (vol_ids, centre) with the volume IDs collected from the envelope down
        to the element and the element centre in the world frame
    """
    description = det_element.description
    if det_element.placement is None or description is None:
        raise ValueError(f"Detector {det_element.name} has no placement")
    for physvol, _, position, ids in description.walk(det_element.placement):
        if description.is_sensitive(physvol.logicalVolume):
            yield ids, position


def sensitive_cellids(det_element, technology):
    """Encoded cellIDs of all sensitive elements of one builder's detector"""
    decoder = create_decoder(technology)
    return np.array([decoder.encode(ids) for ids, _ in iter_sensitive_cells(det_element)], dtype=np.int64)
