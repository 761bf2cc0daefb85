"""Local identity records."""
