"""
Entity Resolution

Typed lookups of EVE entities through the ESI request engine.

Key Components:
- entity.py: Characters, corporations, alliances, portraits, name searches
  and contact management
- __main__.py: CLI interface for public lookups
"""
