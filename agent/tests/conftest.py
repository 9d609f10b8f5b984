"""
Point the agent's data directory at a throwaway folder before any
unitree_agent module is imported (config.py creates it on import).
"""

import os
import sys
import tempfile
from pathlib import Path

os.environ.setdefault("UNITREE_HOME", tempfile.mkdtemp(prefix="unitree_test_"))
sys.path.insert(0, str(Path(__file__).parent.parent))
