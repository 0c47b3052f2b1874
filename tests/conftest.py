"""
Pytest configuration file that ensures the src directory is in the Python path.
This allows imports like 'from pgbox.catalog import ...' to work without installing.
"""
import sys
from pathlib import Path

import pytest

# Add the src directory to Python path so we can import the pgbox package
src_dir = Path(__file__).parent.parent / "src"
if str(src_dir) not in sys.path:
    sys.path.insert(0, str(src_dir))

from pgbox.catalog import load_catalog  # noqa: E402


@pytest.fixture
def catalog():
    """The built-in extension catalog."""
    return load_catalog()
