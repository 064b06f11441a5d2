"""DoobieDB: product identification and catalog tooling."""

__version__ = "0.4.0"
