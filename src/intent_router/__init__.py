from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("intent-router")
except PackageNotFoundError:
    # Package not installed (e.g. running from source without pip install)
    __version__ = "0.0.0.dev0"

__all__ = ["__version__"]

import logging

# Library package: attach a NullHandler so that logging calls inside
# intent_router are discarded unless the application (CLI, bot process,
# test harness) configures handlers.
logging.getLogger(__name__).addHandler(logging.NullHandler())
