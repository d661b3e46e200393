"""HTTP API for the record migrator."""
