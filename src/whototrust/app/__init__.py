"""
Application Layer

This package holds the pieces that wire the library together for a running
process: settings loaded from the environment, the metrics client abstraction
and the command line entry point.

Key Components:
- config.py: Configuration management using Pydantic settings
- metrics.py: Vendor-agnostic metrics client (Telegraf/StatsD or no-op)
- cli.py: Logging setup and the ``whototrust`` command
"""
