"""Bridge-then-swap execution orchestrator."""

from importlib import metadata


def __getattr__(name: str) -> str:
    """Expose the package version via ``kanz.__version__``."""
    if name == "__version__":
        try:
            return metadata.version("kanz-orchestrator")
        except metadata.PackageNotFoundError:
            return "0.0.0"
    raise AttributeError(name)


__all__ = ["__version__"]
