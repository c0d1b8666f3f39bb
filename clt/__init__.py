"""Record, replay and compare interactive command-line sessions."""

# Import key modules for easy access
from . import config_loader as config_loader
from . import document as document
from . import matcher as matcher

# Version information
__version__ = "0.1.0"

# Expose commonly used classes
from .config_loader import load_config as load_config
from .patterns import PatternRegistry as PatternRegistry
from .session.manager import SessionManager as SessionManager

__all__ = [
    "config_loader",
    "document",
    "matcher",
    "load_config",
    "PatternRegistry",
    "SessionManager",
]
