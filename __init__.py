"""Package marker so the host can load the DPS Meter plugin folder as a package."""

# Hosts that import the plugin folder as a package reach load.py through its
# relative-import branch; test runs import load.py as a top-level module.
if __package__:
    from .version import __version__  # noqa: F401
else:  # pragma: no cover - executed outside a package context
    from version import __version__  # noqa: F401

__all__ = ["__version__"]
