"""detdeploy — deterministic, version-gated contract deployment."""

__version__ = "0.1.0"
