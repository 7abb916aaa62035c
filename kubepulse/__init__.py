"""kubepulse - Kubernetes incident correlation views."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("kubepulse")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
