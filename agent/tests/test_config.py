"""
Tests for config.py — file + environment merging, validation, typed builders.
"""

import json
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

sys.path.insert(0, str(Path(__file__).parent.parent))

from unitree_agent import config
from unitree_agent.errors import ConfigError
from unitree_agent.models import ValidatorConfig


class TestEnvOverrides(unittest.TestCase):

    def test_parses_known_variables(self):
        env = {
            "UNITREE_SERVER_URL": "https://api.example.edu",
            "UNITREE_POINTS_PER_MINUTE": "2",
            "UNITREE_DAILY_CAP_POINTS": "500",
            "UNITREE_ENABLE_LOCATION_TRACKING": "false",
            "UNRELATED": "x",
        }
        out = config.env_overrides(env)
        self.assertEqual(out["serverUrl"], "https://api.example.edu")
        self.assertEqual(out["pointsPerMinute"], 2.0)
        self.assertEqual(out["dailyCapPoints"], 500)
        self.assertIs(out["enableLocationTracking"], False)
        self.assertNotIn("UNRELATED", out)

    def test_bad_number_is_skipped(self):
        out = config.env_overrides({"UNITREE_DAILY_CAP_POINTS": "lots"})
        self.assertNotIn("dailyCapPoints", out)

    def test_single_campus_from_env(self):
        out = config.env_overrides({
            "UNITREE_CAMPUS_LAT": "24.86", "UNITREE_CAMPUS_LNG": "67.00",
            "UNITREE_CAMPUS_RADIUS": "150", "UNITREE_CAMPUS_NAME": "North",
        })
        self.assertEqual(out["campuses"], [{"name": "North", "lat": 24.86, "lng": 67.0, "radiusMeters": 150.0}])


class TestLoadConfig(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.path = Path(self._tmp.name) / "config.json"

    def test_env_wins_over_file(self):
        self.path.write_text(json.dumps({"serverUrl": "https://file", "userId": "u1"}), encoding="utf-8")
        with patch.object(config, "env_overrides", return_value={"serverUrl": "https://env"}):
            loaded = config.load_config(self.path)
        self.assertEqual(loaded, {"serverUrl": "https://env", "userId": "u1"})

    def test_missing_file_and_no_env(self):
        with patch.object(config, "env_overrides", return_value={}):
            self.assertIsNone(config.load_config(self.path))

    def test_unreadable_file_falls_back_to_env(self):
        self.path.write_text("{broken", encoding="utf-8")
        with patch.object(config, "env_overrides", return_value={"userId": "u9"}):
            self.assertEqual(config.load_config(self.path), {"userId": "u9"})

    def test_save_round_trip(self):
        config.save_config({"userId": "u1", "deviceId": "d1"}, self.path)
        with patch.object(config, "env_overrides", return_value={}):
            self.assertEqual(config.load_config(self.path), {"userId": "u1", "deviceId": "d1"})


class TestValidateConfig(unittest.TestCase):

    def test_missing_keys_listed(self):
        with self.assertRaises(ConfigError) as ctx:
            config.validate_config({"serverUrl": "https://x"})
        self.assertIn("userId", str(ctx.exception))
        self.assertIn("deviceId", str(ctx.exception))

    def test_none_config(self):
        with self.assertRaises(ConfigError):
            config.validate_config(None)

    def test_bad_match_mode(self):
        with self.assertRaises(ConfigError):
            config.validate_config({"serverUrl": "s", "userId": "u", "deviceId": "d", "ipMatchMode": "regex"})

    def test_valid_config_returned(self):
        cfg = {"serverUrl": "s", "userId": "u", "deviceId": "d"}
        self.assertIs(config.validate_config(cfg), cfg)


class TestBuilders(unittest.TestCase):

    def test_validator_config(self):
        built = config.build_validator_config({
            "ipPrefix": "10.22",
            "ipMatchMode": "cidr",
            "campuses": [{"name": "Main", "lat": "24.86", "lng": 67.0}],
        })
        self.assertIsInstance(built, ValidatorConfig)
        self.assertEqual(built.ip_prefix, "10.22")
        self.assertEqual(built.ip_match_mode, "cidr")
        self.assertEqual(built.campuses[0].latitude, 24.86)
        self.assertEqual(built.campuses[0].radius_meters, 100.0)

    def test_validator_defaults(self):
        built = config.build_validator_config({})
        self.assertEqual(built.ip_prefix, "192.168")
        self.assertEqual(built.ip_match_mode, "octet")
        self.assertEqual(built.campuses, ())

    def test_accrual_config(self):
        built = config.build_accrual_config({"pointsPerMinute": 2, "dailyCapPoints": "500"})
        self.assertEqual(built.points_per_minute, 2.0)
        self.assertEqual(built.min_session_minutes, 5.0)
        self.assertEqual(built.daily_cap_points, 500)


if __name__ == "__main__":
    unittest.main()
