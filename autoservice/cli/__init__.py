"""CLI module for autoservice."""
