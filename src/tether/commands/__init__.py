"""Subcommands of the tether CLI."""
