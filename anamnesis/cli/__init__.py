"""Command-line interface for anamnesis."""
