"""
Tests for location.py and network.py — providers, permission states, sampler timeouts.
"""

import json
import sys
import tempfile
import threading
import time
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

sys.path.insert(0, str(Path(__file__).parent.parent))

from unitree_agent.location import (
    PermissionState, StaticLocationProvider, FileLocationProvider, DisabledLocationProvider,
    provider_from_config,
)
from unitree_agent.models import LocationReason
from unitree_agent.network import SignalSampler, get_current_ip, is_online


class TestLocationProviders(unittest.TestCase):

    def test_static(self):
        provider = StaticLocationProvider(24.86, 67.0, clock=lambda: 123.0)
        self.assertEqual(provider.permission(), PermissionState.GRANTED)
        fix = provider.current_location(timeout=1)
        self.assertEqual((fix.latitude, fix.longitude, fix.sampled_at), (24.86, 67.0, 123.0))

    def test_disabled(self):
        provider = DisabledLocationProvider()
        self.assertEqual(provider.permission(), PermissionState.DENIED)
        self.assertIsNone(provider.current_location(timeout=1))

    def test_file_provider(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "fix.json"
            provider = FileLocationProvider(path, max_fix_age=120, clock=lambda: 1000.0)
            self.assertEqual(provider.permission(), PermissionState.UNDETERMINED)
            self.assertIsNone(provider.current_location(timeout=1))

            path.write_text(json.dumps({
                "latitude": 24.86, "longitude": 67.0, "accuracy": 8, "timestamp": 950,
            }), encoding="utf-8")
            self.assertEqual(provider.permission(), PermissionState.GRANTED)
            self.assertEqual(provider.current_location(timeout=1).accuracy_meters, 8.0)

            path.write_text(json.dumps({
                "latitude": 24.86, "longitude": 67.0, "timestamp": 500, "permission": "granted",
            }), encoding="utf-8")
            self.assertIsNone(provider.current_location(timeout=1))

            path.write_text(json.dumps({"permission": "denied"}), encoding="utf-8")
            self.assertEqual(provider.permission(), PermissionState.DENIED)
            self.assertIsNone(provider.current_location(timeout=1))

    def test_provider_from_config(self):
        self.assertIsInstance(provider_from_config({}), DisabledLocationProvider)
        self.assertIsInstance(
            provider_from_config({"locationProvider": {"type": "static", "latitude": 1, "longitude": 2}}),
            StaticLocationProvider,
        )
        self.assertIsInstance(
            provider_from_config({"locationProvider": {"type": "file", "path": "/tmp/x.json"}}),
            FileLocationProvider,
        )
        self.assertIsInstance(
            provider_from_config({"enableLocationTracking": False,
                                  "locationProvider": {"type": "static", "latitude": 1, "longitude": 2}}),
            DisabledLocationProvider,
        )


class TestSignalSampler(unittest.TestCase):

    def make(self, provider, ip_lookup=lambda: "10.22.5.9", timeout=1):
        sampler = SignalSampler(provider, ip_lookup=ip_lookup, timeout=timeout, clock=lambda: 50.0)
        self.addCleanup(sampler.close)
        return sampler

    def test_granted_sample(self):
        signal, location, reason = self.make(StaticLocationProvider(1, 2)).sample()
        self.assertEqual(signal.ip_address, "10.22.5.9")
        self.assertEqual(signal.sampled_at, 50.0)
        self.assertIsNotNone(location)
        self.assertIsNone(reason)

    def test_permission_denied(self):
        signal, location, reason = self.make(DisabledLocationProvider()).sample()
        self.assertIsNotNone(signal)
        self.assertIsNone(location)
        self.assertEqual(reason, LocationReason.PERMISSION_DENIED)

    def test_permission_undetermined(self):
        provider = MagicMock()
        provider.permission.return_value = PermissionState.UNDETERMINED
        _, location, reason = self.make(provider).sample()
        self.assertIsNone(location)
        self.assertEqual(reason, LocationReason.PERMISSION_UNDETERMINED)
        provider.current_location.assert_not_called()

    def test_no_fix(self):
        provider = MagicMock()
        provider.permission.return_value = PermissionState.GRANTED
        provider.current_location.return_value = None
        _, location, reason = self.make(provider).sample()
        self.assertEqual(reason, LocationReason.NO_FIX)

    def test_hung_location_times_out(self):
        release = threading.Event()
        self.addCleanup(release.set)
        provider = MagicMock()
        provider.permission.return_value = PermissionState.GRANTED
        provider.current_location.side_effect = lambda timeout: release.wait(5)

        sampler = self.make(provider, timeout=0.05)
        started = time.monotonic()
        _, location, reason = sampler.sample()
        self.assertLess(time.monotonic() - started, 2)
        self.assertIsNone(location)
        self.assertEqual(reason, LocationReason.TIMEOUT)

        # Still hung: the next sample does not queue another call.
        _, _, reason = sampler.sample()
        self.assertEqual(reason, LocationReason.TIMEOUT)
        self.assertEqual(provider.current_location.call_count, 1)

    def test_ip_lookup_failure_is_absent_signal(self):
        def boom():
            raise OSError("no route")
        signal, _, _ = self.make(StaticLocationProvider(1, 2), ip_lookup=boom).sample()
        self.assertIsNone(signal)


class TestNetworkHelpers(unittest.TestCase):

    @patch("unitree_agent.network.socket.socket")
    def test_get_current_ip(self, mock_socket):
        mock_socket.return_value.getsockname.return_value = ("10.22.5.9", 5555)
        self.assertEqual(get_current_ip(), "10.22.5.9")
        mock_socket.return_value.close.assert_called_once()

    @patch("unitree_agent.network.socket.socket")
    def test_get_current_ip_offline(self, mock_socket):
        mock_socket.return_value.connect.side_effect = OSError("unreachable")
        self.assertIsNone(get_current_ip())

    @patch("unitree_agent.network.socket.create_connection")
    def test_is_online(self, create_connection):
        self.assertTrue(is_online("https://api.example.edu/path"))
        create_connection.assert_called_once_with(("api.example.edu", 443), timeout=4)
        create_connection.side_effect = OSError("refused")
        self.assertFalse(is_online("http://api.example.edu"))


if __name__ == "__main__":
    unittest.main()
