"""Command line interface for docstore maintenance tasks."""
