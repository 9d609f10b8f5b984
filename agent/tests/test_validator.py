"""
Tests for validator.py — dual-factor IP + campus check.
"""

import sys
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from unitree_agent.models import LocationReason, ValidatorConfig, Campus
from unitree_agent.validator import validate, ip_matches, haversine_m, check_location
from helpers import CAMPUS, VALIDATOR_CONFIG, net, near, far


class TestIpMatching(unittest.TestCase):

    def test_octet_mode_matches_whole_components(self):
        self.assertTrue(ip_matches("10.22.5.9", "10.22"))
        self.assertTrue(ip_matches("10.22.5.9", "10.22."))
        self.assertFalse(ip_matches("10.220.1.1", "10.22"))
        self.assertFalse(ip_matches("192.168.1.1", "10.22"))

    def test_string_mode_is_loose_prefix(self):
        self.assertTrue(ip_matches("10.220.1.1", "10.22", mode="string"))
        self.assertFalse(ip_matches("11.22.1.1", "10.22", mode="string"))

    def test_cidr_mode(self):
        self.assertTrue(ip_matches("10.22.5.9", "10.22.0.0/16", mode="cidr"))
        self.assertFalse(ip_matches("10.23.5.9", "10.22.0.0/16", mode="cidr"))
        self.assertFalse(ip_matches("not-an-ip", "10.22.0.0/16", mode="cidr"))

    def test_empty_inputs_fail(self):
        self.assertFalse(ip_matches("", "10.22"))
        self.assertFalse(ip_matches(None, "10.22"))
        self.assertFalse(ip_matches("10.22.5.9", ""))

    def test_case_insensitive_for_ipv6(self):
        self.assertTrue(ip_matches("FE80:0:0:0:1", "fe80", mode="string"))


class TestLocation(unittest.TestCase):

    def test_haversine_known_distance(self):
        # One degree of latitude is ~111.19 km on a 6371 km sphere
        d = haversine_m(0.0, 0.0, 1.0, 0.0)
        self.assertAlmostEqual(d, 111_195, delta=5)

    def test_near_point_inside_radius(self):
        valid, name, distance = check_location(near(), (CAMPUS,))
        self.assertTrue(valid)
        self.assertEqual(name, "Main Campus")
        self.assertAlmostEqual(distance, 50.0, delta=0.5)

    def test_far_point_records_nearest_distance(self):
        valid, name, distance = check_location(far(), (CAMPUS,))
        self.assertFalse(valid)
        self.assertIsNone(name)
        self.assertAlmostEqual(distance, 2000.0, delta=1.0)

    def test_nearest_matching_campus_wins(self):
        annex = Campus("Annex", CAMPUS.latitude + 60 / 111_195, CAMPUS.longitude, 500)
        valid, name, _ = check_location(near(), (CAMPUS, annex))
        self.assertTrue(valid)
        self.assertEqual(name, "Annex")

    def test_no_campuses(self):
        self.assertEqual(check_location(near(), ()), (False, None, None))


class TestValidate(unittest.TestCase):

    def test_both_factors_pass(self):
        result = validate(net(), near(), VALIDATOR_CONFIG)
        self.assertTrue(result.ip_valid)
        self.assertTrue(result.location_valid)
        self.assertTrue(result.is_valid)
        self.assertEqual(result.location_reason, LocationReason.OK)

    def test_null_location_fails_closed(self):
        result = validate(net(), None, VALIDATOR_CONFIG, LocationReason.PERMISSION_DENIED)
        self.assertTrue(result.ip_valid)
        self.assertFalse(result.location_valid)
        self.assertFalse(result.is_valid)
        self.assertEqual(result.location_reason, LocationReason.PERMISSION_DENIED)

    def test_null_location_without_reason_is_no_fix(self):
        result = validate(net(), None, VALIDATOR_CONFIG)
        self.assertEqual(result.location_reason, LocationReason.NO_FIX)

    def test_is_and_not_or(self):
        cases = [
            (net(), near(), True),
            (net("8.8.8.8"), near(), False),
            (net(), far(), False),
            (None, near(), False),
            (None, None, False),
        ]
        for signal, location, expected in cases:
            result = validate(signal, location, VALIDATOR_CONFIG)
            self.assertEqual(result.is_valid, expected)
            self.assertEqual(result.is_valid, result.ip_valid and result.location_valid)

    def test_outside_campus_reason(self):
        result = validate(net(), far(), VALIDATOR_CONFIG)
        self.assertEqual(result.location_reason, LocationReason.OUTSIDE_CAMPUS)
        self.assertIn("ip=ok", result.describe())

    def test_deterministic(self):
        first = validate(net(), near(), VALIDATOR_CONFIG)
        for _ in range(5):
            self.assertEqual(validate(net(), near(), VALIDATOR_CONFIG), first)

    def test_match_mode_from_config(self):
        loose = ValidatorConfig(ip_prefix="10.22", campuses=(CAMPUS,), ip_match_mode="string")
        self.assertTrue(validate(net("10.220.1.1"), near(), loose).is_valid)
        self.assertFalse(validate(net("10.220.1.1"), near(), VALIDATOR_CONFIG).is_valid)


if __name__ == "__main__":
    unittest.main()
