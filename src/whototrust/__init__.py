"""
whototrust - EVE Online multi-character identity synchronization

This package lets a logged-in main character authorize any number of additional
characters through EVE SSO and keeps their tokens, corporation membership and
portraits current. Tokens are stored encrypted at rest, one blob per main
character.

Key Components:
- app: Configuration, metrics and command line bootstrap
- esi: EVE SSO token handling, the retrying ESI request engine and the
  identity synchronizer
- model: Pydantic models for credentials and ESI payloads
- persist: Encrypted credential storage
- resolve: Typed ESI lookups (characters, corporations, alliances, portraits,
  searches and contacts)

Architecture Overview:
1. Authorization:
   - A user logs in with a main character, then adds more characters
   - Each authorization code is exchanged for a token that is stored under the
     main character's credential set

2. Synchronization:
   - Every known character's token is refreshed concurrently
   - Corporation, verified identity and portrait are resolved per character
   - Failures degrade a single character, never the whole batch

3. Request Resilience:
   - Transient ESI failures are retried with exponential backoff and jitter
   - A 401 transparently refreshes the token and retries once
"""
