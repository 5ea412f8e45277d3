# -*- coding: utf-8 -*-

"""Top-level for phylotrait."""

from . import data
from . import simulator as sim
from . import tools as tl
from .setup_utilities import parse_config, setup_logging

import importlib.metadata as importlib_metadata

package_name = "phylotrait"
__version__ = importlib_metadata.version(package_name)

import sys

sys.modules.update({f"{__name__}.{m}": globals()[m] for m in ["tl", "sim"]})
