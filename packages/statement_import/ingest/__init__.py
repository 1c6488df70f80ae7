"""Statement ingestion: document readers, shape detection and parsers."""
