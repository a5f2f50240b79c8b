"""Post-processing of pluggable clustering algorithms into validated partitions."""

from clusterpost.core import *  # noqa: F401,F403
from clusterpost.core import __all__

__version__ = "0.1.0"
