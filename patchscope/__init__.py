"""
PatchScope: visual similarity search client with patch correspondence analysis.
"""

__version__ = "1.0.0"

from .config.settings import Config, load_config, save_config
from .core.grid import GridMapper
from .core.correspondence import CorrespondenceStore, TopMatchAggregator
from .core.selection import SelectionController

__all__ = [
    "Config", "load_config", "save_config",
    "GridMapper", "CorrespondenceStore", "TopMatchAggregator", "SelectionController",
]
