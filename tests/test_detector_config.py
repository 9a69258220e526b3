import os
import sys
import unittest

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from splitcal_test_utils import scenario_configs, scenario_dims, scenario_params

from splitcal.detector_config import (
    DEFAULT_SPLITCAL_PARAMETERS, SPLITCAL_DETECTOR_TYPES, SplitCalDimensions,
    check_consistency, get_splitcal_configs, parse_layer_codes,
)
from splitcal.errors import ConfigurationError, LayoutOverflowError


class TestParseLayerCodes(unittest.TestCase):
    def test_digits_become_codes(self):
        self.assertEqual(parse_layer_codes('71738'), (7, 1, 7, 3, 8))

    def test_surrounding_whitespace_is_ignored(self):
        self.assertEqual(parse_layer_codes('  56\n'), (5, 6))

    def test_rejects_codes_outside_alphabet(self):
        for text in ('7190', '12a', '1 2'):
            with self.assertRaises(ConfigurationError) as ctx:
                parse_layer_codes(text, 'Det')
            self.assertIn('Det', str(ctx.exception))

    def test_rejects_empty_string(self):
        with self.assertRaises(ConfigurationError):
            parse_layer_codes('   ')

    def test_rejects_non_string(self):
        with self.assertRaises(ConfigurationError):
            parse_layer_codes(71738)


class TestDimensionSet(unittest.TestCase):
    def test_reserved_and_placed_extents(self):
        dims = scenario_dims()
        self.assertEqual(dims.reserved_extent(1), 10.0)
        self.assertEqual(dims.reserved_extent(2), 10.0)
        self.assertEqual(dims.reserved_extent(3), 5.0)
        self.assertEqual(dims.reserved_extent(6), 20.0)
        self.assertEqual(dims.reserved_extent(7), 3.0)
        self.assertEqual(dims.placed_extent(7), 2.0)
        self.assertEqual(dims.reserved_extent(8), 1.0)
        self.assertEqual(dims.total_stack_length(), 22.0)

    def test_extra_gap_comes_from_wide_bar_record(self):
        dims = scenario_dims(thinbar={'extrazgap': 50.0})
        self.assertEqual(dims.extrazgap, 1.0)
        self.assertEqual(dims.reserved_extent(7), 3.0)

    def test_bar_row_geometry(self):
        dims = scenario_dims(widebar={'x_extra_spacing': 2.0})
        self.assertEqual(dims.widebar.pitch, 12.0)
        self.assertEqual(dims.widebar.row_width, 4 * 10.0 + 3 * 2.0)

    def test_fibre_record_reads_length_from_y(self):
        dims = scenario_dims()
        self.assertEqual(dims.hplfibre.length, 100.0)
        self.assertEqual(dims.hplfibre.diameter, 2.0)
        self.assertAlmostEqual(dims.hplfibre.core_radius, 0.9)

    def test_missing_child_record(self):
        params = scenario_params()
        del params['split']
        with self.assertRaises(ConfigurationError) as ctx:
            SplitCalDimensions.from_dict(params)
        self.assertIn('split', str(ctx.exception))

    def test_missing_layer_codes(self):
        params = scenario_params()
        del params['layer_codes']
        with self.assertRaises(ConfigurationError):
            SplitCalDimensions.from_dict(params)

    def test_non_numeric_attribute(self):
        with self.assertRaises(ConfigurationError):
            scenario_dims(widebar={'z': 'thick'})

    def test_declared_layer_count_must_match(self):
        dims = scenario_dims(num_layers=6)
        with self.assertRaises(ConfigurationError) as ctx:
            dims.validate()
        self.assertIn('5 slots', str(ctx.exception))
        scenario_dims(num_layers=5).validate()

    def test_non_positive_extent(self):
        dims = scenario_dims(thinbar={'z': 0.0})
        with self.assertRaises(ConfigurationError):
            dims.validate()

    def test_fibre_checks_only_for_hpl(self):
        params = scenario_params()
        params['hplfibre'] = None
        dims = SplitCalDimensions.from_dict(params)
        dims.validate('widebar')
        with self.assertRaises(ConfigurationError):
            dims.validate('hpl')

    def test_fibre_layers_must_fit_module(self):
        dims = scenario_dims(hpln_fibre_layers=11)
        with self.assertRaises(ConfigurationError):
            dims.validate('hpl')
        scenario_dims(hpln_fibre_layers=10).validate('hpl')

    def test_fibre_cladding_thinner_than_radius(self):
        dims = scenario_dims(hplfibre={'thickness': 1.0})
        with self.assertRaises(ConfigurationError):
            dims.validate('hpl')

    def test_overflow_error_is_a_configuration_error(self):
        self.assertTrue(issubclass(LayoutOverflowError, ConfigurationError))
        self.assertTrue(issubclass(ConfigurationError, ValueError))


class TestConsistency(unittest.TestCase):
    def test_default_configs(self):
        configs = get_splitcal_configs()
        self.assertEqual(set(configs), set(SPLITCAL_DETECTOR_TYPES))
        for type_name, dims in configs.items():
            name, det_id, _ = SPLITCAL_DETECTOR_TYPES[type_name]
            self.assertEqual(dims.name, name)
            self.assertEqual(dims.det_id, det_id)
            dims.validate()
        self.assertLessEqual(configs['DD4hep_SplitCalHPLs'].total_stack_length(),
                             DEFAULT_SPLITCAL_PARAMETERS['box']['z'])

    def test_configs_share_fingerprint(self):
        configs = scenario_configs()
        fingerprints = {dims.fingerprint() for dims in configs.values()}
        self.assertEqual(len(fingerprints), 1)
        self.assertEqual(check_consistency(configs.values()), fingerprints.pop())

    def test_fingerprint_ignores_transverse_parameters(self):
        a = scenario_dims()
        b = scenario_dims(widebar={'num_x': 7, 'x': 3.0}, thinbar={'x_offset': 4.0})
        self.assertEqual(a.fingerprint(), b.fingerprint())

    def test_displaced_envelope_rejected(self):
        configs = scenario_configs('7576')
        configs['DD4hep_SplitCalHPLs'] = scenario_dims('7576', position={'z': -10.0})
        with self.assertRaises(ConfigurationError) as ctx:
            check_consistency(configs.values())
        self.assertIn('position_z', str(ctx.exception))

    def test_tilted_envelope_rejected(self):
        a = scenario_dims()
        b = scenario_dims(rotation={'y': 0.1})
        self.assertNotEqual(a.fingerprint(), b.fingerprint())
        self.assertIn('rotation_y', a.shared_parameters())

    def test_mismatch_names_differing_keys(self):
        a = scenario_dims()
        b = SplitCalDimensions.from_dict(scenario_params(thinbar={'z': 6.0}), name='Other')
        with self.assertRaises(ConfigurationError) as ctx:
            check_consistency([a, b])
        message = str(ctx.exception)
        self.assertIn('thinbar_z', message)
        self.assertIn('Other', message)
        self.assertNotIn('widebar_z', message)

    def test_mismatched_codes(self):
        with self.assertRaises(ConfigurationError):
            check_consistency([scenario_dims('71738'), scenario_dims('71783')])

    def test_empty_input(self):
        self.assertIsNone(check_consistency([]))


if __name__ == '__main__':
    unittest.main()
