"""botbrain — online policy learning for autonomous game agents."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("botbrain")
except PackageNotFoundError:
    __version__ = "0.1.0"  # fallback for development
