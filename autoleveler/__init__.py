"""
    Autoleveler - GRBL surface probing and height compensation
"""

from autoleveler.autolevel.controller import AutoLevel, AutoLevelOptions
from autoleveler.autolevel.leveler import compensate
from autoleveler.autolevel.mesh import HeightMesh, Point3
from autoleveler.utils import Settings

__version__ = "0.1.0"

__all__ = [
    "AutoLevel",
    "AutoLevelOptions",
    "HeightMesh",
    "Point3",
    "Settings",
    "compensate",
]
