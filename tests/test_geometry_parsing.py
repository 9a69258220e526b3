import math
import os
import sys
import tempfile
import unittest
import xml.etree.ElementTree as ET

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from splitcal_test_utils import make_description, scenario_dims

from splitcal.detector_config import SPLITCAL_DETECTOR_TYPES, get_splitcal_configs
from splitcal.errors import ConfigurationError
from splitcal.geometry.builders import build_splitcal
from splitcal.geometry_parsing.cellid_decoders import (
    BitFieldCoder, create_decoder, decode_splitcal_cellid,
)
from splitcal.geometry_parsing.compact_parsers import (
    evaluate_math_expression, load_splitcal_compact, parse_detector_constants, parse_value,
)
from splitcal.geometry_parsing.geometry_info import get_geometry_info, layer_edges


REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))

COMPACT_XML = """
<lccdd>
  <define>
    <constant name="half_z" value="SplitCal_z/2"/>
    <constant name="SplitCal_z" value="10*cm"/>
  </define>
  <detectors>
    <detector id="12" name="TinyWide" type="DD4hep_SplitCalWideBars_and_Basis" readout="TinyHits"
              layer_codes="71738" num_layers="5">
      <box x="10*cm" y="10*cm" z="SplitCal_z"/>
      <position x="0" y="0" z="half_z"/>
      <widebar x="1*cm" y="10*cm" z="1*cm" num_x="4" extrazgap="1*mm" material="Polystyrene"/>
      <thinbar x="5*mm" y="10*cm" z="5*mm" num_x="8" material="Polystyrene"/>
      <passive_layer x="10*cm" y="10*cm" z="2*mm" material="Lead"/>
      <split x="10*cm" y="10*cm" z="1*mm"/>
      <hplbox x="2*cm" y="10*cm" z="2*cm"/>
    </detector>
    <detector id="99" name="Tracker" type="DD4hep_SomethingElse"/>
  </detectors>
</lccdd>
"""


class TestBitFieldCoder(unittest.TestCase):
    def test_encode_decode(self):
        decoder = create_decoder('hpl')
        values = {'system': 32, 'splitcal_layer': 1, 'splitcal_hpl_layer': 5, 'splitcal_hplfibre': 1199}
        cellid = decoder.encode(values)
        self.assertEqual(decoder.decode(cellid), values)
        self.assertEqual(cellid & 0xFF, 32)

    def test_bar_fields(self):
        cellid = create_decoder('widebar').encode({'system': 30, 'splitcal_layer': 3, 'splitcal_bar': 17})
        decoded = decode_splitcal_cellid(cellid, 'widebar')
        self.assertEqual(decoded, {'system': 30, 'splitcal_layer': 3, 'splitcal_bar': 17})

    def test_unset_fields_are_zero(self):
        decoder = create_decoder('thinbar')
        self.assertEqual(decoder.decode(decoder.encode({'splitcal_bar': 2}))['splitcal_layer'], 0)

    def test_out_of_range(self):
        with self.assertRaises(ValueError):
            create_decoder('widebar').encode({'splitcal_layer': 256})

    def test_signed_field(self):
        decoder = BitFieldCoder("a:4,b:-4")
        self.assertEqual(decoder.decode(decoder.encode({'a': 3, 'b': -2})), {'a': 3, 'b': -2})

    def test_unknown_field(self):
        with self.assertRaises(KeyError):
            create_decoder('hpl').encode({'splitcal_bar': 1})

    def test_duplicate_field(self):
        with self.assertRaises(ValueError):
            BitFieldCoder("system:8,system:8")

    def test_unknown_technology(self):
        with self.assertRaises(ValueError):
            create_decoder('ecal')

    def test_built_detector_ids_decode_back(self):
        elements = build_splitcal(make_description(), get_splitcal_configs(), verbose=False)
        sdet = elements['DD4hep_SplitCalWideBars_and_Basis']
        layout = sdet.extensions['layout']
        bar_pv = layout.placed_slots('widebar')[2].placement.logicalVolume.daughterVolumes[5]
        bar_id = sdet.description.vol_ids(bar_pv)['splitcal_bar']
        ids = {'system': sdet.id, 'splitcal_layer': 2, 'splitcal_bar': bar_id}
        decoded = decode_splitcal_cellid(create_decoder('widebar').encode(ids), 'widebar')
        self.assertEqual(decoded, {'system': 30, 'splitcal_layer': 2, 'splitcal_bar': 5})


class TestGeometryInfo(unittest.TestCase):
    def test_scenario_slots(self):
        info = get_geometry_info(scenario_dims('71738'), 'thinbar')
        self.assertEqual(info['detector_name'], 'SplitCalTest')
        self.assertAlmostEqual(info['total_length'], 22.0)
        self.assertAlmostEqual(info['final_z'], -28.0)
        layers = info['layers']
        self.assertEqual(sorted(layers), [0, 1, 2, 3, 4])
        self.assertEqual(layers[3]['content'], 'thinbar')
        self.assertEqual(layers[3]['orientation'], 'vertical')
        self.assertTrue(layers[3]['placed'])
        self.assertEqual(layers[3]['vol_ids'], {'splitcal_layer': 0})
        self.assertFalse(layers[1]['placed'])
        self.assertAlmostEqual(layers[3]['z_min'], -34.0)
        self.assertAlmostEqual(layers[3]['z_max'], -29.0)
        # envelope centred at z = 50
        self.assertAlmostEqual(layers[3]['global_z_min'], 16.0)
        self.assertAlmostEqual(layers[3]['global_z_max'], 21.0)
        self.assertAlmostEqual(layers[0]['z_end'] - layers[0]['z_start'], 3.0)
        self.assertAlmostEqual(layers[0]['z_max'] - layers[0]['z_min'], 2.0)

    def test_flipped_envelope(self):
        dims = scenario_dims('71738', rotation={'y': math.pi}, position={'z': 0.0})
        info = get_geometry_info(dims)
        self.assertAlmostEqual(info['layers'][1]['global_z_min'], 37.0)
        self.assertAlmostEqual(info['layers'][1]['global_z_max'], 47.0)

    def test_layer_edges(self):
        info = get_geometry_info(scenario_dims('71738'))
        edges = layer_edges(info, codes=(1, 2, 3, 4, 5, 6))
        self.assertEqual(edges.shape, (2, 2))
        self.assertAlmostEqual(edges[0, 0], 3.0)
        self.assertAlmostEqual(edges[0, 1], 13.0)
        self.assertEqual(layer_edges(info, contents=('split',)).shape, (1, 2))
        self.assertEqual(layer_edges(info, contents=('hpl',)).shape, (0, 2))

    def test_overflow_reported(self):
        with self.assertRaises(ConfigurationError):
            get_geometry_info(scenario_dims('6' * 6))


class TestCompactParsers(unittest.TestCase):
    def test_math_expressions(self):
        self.assertAlmostEqual(evaluate_math_expression("(787.105+1.75)*mm", {'mm': 1.0}), 788.855)
        self.assertAlmostEqual(parse_value("2*SplitCal_z - 1.5*cm", {'SplitCal_z': 5.0}), -5.0)
        self.assertAlmostEqual(parse_value("90*deg"), math.pi / 2.)
        self.assertAlmostEqual(parse_value("-3"), -3.0)
        self.assertIsNone(parse_value("unknown_constant*mm"))
        self.assertIsNone(parse_value("__import__('os')"))
        self.assertIsNone(parse_value("1/0"))

    def test_constants_in_any_order(self):
        root = ET.fromstring(COMPACT_XML)
        constants = parse_detector_constants(root)
        self.assertAlmostEqual(constants['SplitCal_z'], 100.0)
        self.assertAlmostEqual(constants['half_z'], 50.0)

    def test_circular_constants_left_out(self):
        root = ET.fromstring('<define><constant name="a" value="b+1"/><constant name="b" value="a*2"/>'
                             '<constant name="c" value="3*cm"/></define>')
        constants = parse_detector_constants(root)
        self.assertNotIn('a', constants)
        self.assertNotIn('b', constants)
        self.assertAlmostEqual(constants['c'], 30.0)

    def _load(self, text):
        with tempfile.NamedTemporaryFile('w', suffix='.xml', delete=False) as f:
            f.write(text)
            path = f.name
        try:
            return load_splitcal_compact(path)
        finally:
            os.remove(path)

    def test_load_compact(self):
        configs = self._load(COMPACT_XML)
        self.assertEqual(list(configs), ['DD4hep_SplitCalWideBars_and_Basis'])
        dims = configs['DD4hep_SplitCalWideBars_and_Basis']
        self.assertEqual(dims.name, 'TinyWide')
        self.assertEqual(dims.det_id, 12)
        self.assertEqual(dims.readout, 'TinyHits')
        self.assertEqual(dims.num_layers, 5)
        self.assertAlmostEqual(dims.envelope.z, 100.0)
        self.assertAlmostEqual(dims.position.z, 50.0)
        self.assertAlmostEqual(dims.widebar.z, 10.0)
        self.assertAlmostEqual(dims.extrazgap, 1.0)
        self.assertEqual(dims.widebar.num_x, 4)
        self.assertEqual(dims.passive_layer.material, 'Lead')
        self.assertIsNone(dims.hplfibre)
        self.assertEqual(dims.fingerprint(), scenario_dims('71738').fingerprint())

    def test_unresolvable_attribute(self):
        text = COMPACT_XML.replace('z="1*cm" num_x="4"', 'z="missing_constant" num_x="4"')
        with self.assertRaises(ConfigurationError):
            self._load(text)

    def test_no_splitcal_detector(self):
        with self.assertRaises(ConfigurationError):
            self._load('<lccdd><detectors><detector name="x" type="Other"/></detectors></lccdd>')

    def test_shipped_compact_matches_defaults(self):
        configs = load_splitcal_compact(os.path.join(REPO_ROOT, 'compact', 'SplitCal.xml'))
        self.assertEqual(set(configs), set(SPLITCAL_DETECTOR_TYPES))
        defaults = get_splitcal_configs()
        for type_name, dims in configs.items():
            dims.validate(SPLITCAL_DETECTOR_TYPES[type_name][2])
            self.assertEqual(dims.fingerprint(), defaults[type_name].fingerprint())
            self.assertEqual(dims.det_id, defaults[type_name].det_id)
        hpl = configs['DD4hep_SplitCalHPLs']
        self.assertAlmostEqual(hpl.hplfibre.rmax, 0.5)
        self.assertEqual(hpl.hpl_n_fibre_layers, 6)


if __name__ == '__main__':
    unittest.main()
