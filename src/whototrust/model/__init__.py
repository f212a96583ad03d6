"""
Data Models

Pydantic models for OAuth credentials and the ESI payloads this service reads.

Key Models:
- credential.py: Credential and CredentialSet, the unit of persistence
- character.py: ESI responses and the resolved identity produced by a
  synchronization pass
"""
