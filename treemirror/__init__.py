"""treemirror - incremental mirroring of a live object hierarchy."""

__version__ = "0.1.0"

from .config import Config, load_config
from .model import ConnectionState, Delta, Node

__all__ = ["Config", "ConnectionState", "Delta", "Node", "load_config", "__version__"]
