"""
bufkit-data: archive of bufkit sounding files

Keeps gzip-compressed sounding files for forecast-model runs in a flat
directory, indexed by site, model and initialization time in DuckDB.
"""

__version__ = "0.9.0"
__author__ = "bufkit-data Team"

from bufkit_data.archive.archive import Archive
from bufkit_data.archive.reader import ArchiveReader
from bufkit_data.core.config import Settings
from bufkit_data.database.models import Model

__all__ = ["Archive", "ArchiveReader", "Model", "Settings", "__version__"]
