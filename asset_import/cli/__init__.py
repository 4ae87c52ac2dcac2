"""Command line entry point: ``python -m asset_import.cli``."""
