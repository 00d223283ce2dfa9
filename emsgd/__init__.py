"""EMSG daemon: federated messaging with DNS routing and key-based identity."""

__version__ = "0.1.0"

from emsgd.client import EmsgClient

__all__ = ["EmsgClient", "__version__"]
