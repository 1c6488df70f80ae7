"""Per-shape document parsers: ``tabular``, ``grid`` and ``pattern``."""
