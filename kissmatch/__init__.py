"""Point cloud registration helpers: cloud readers, FPFH features, feature matching and geometry utilities."""

__version__ = "0.1.0"