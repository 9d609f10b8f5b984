"""
UniTree WiFi Session Agent
==========================
Runs in the background on a campus device. Every tick it checks that the
device is on the university network (IP prefix) AND physically on campus
(location), tracks the resulting WiFi session, and credits points when the
session ends. Sessions and point transactions are kept in a local store and
uploaded to the UniTree server when it is reachable.

It sends ONLY session timestamps, the interface IP, campus match and points.
Raw coordinates never leave the device.

Usage:
    python agent.py
"""

from unitree_agent.runner import run_with_auto_restart

if __name__ == "__main__":
    run_with_auto_restart()
