"""
Command-line interface for the identity fusion resolver.

Runs resolution passes over JSON snapshots and renders the results with rich.
"""

from .main import main, build_parser
from .ui_components import UIComponents

__all__ = [
    'main',
    'build_parser',
    'UIComponents',
]
