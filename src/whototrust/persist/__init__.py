"""
Encrypted Credential Persistence

Stores one encrypted credential set per main character on local disk.

Key Components:
- encrypt.py: AES-CFB cipher producing HMAC-tagged ``IV || ciphertext`` blobs
- identity.py: Load, persist, update and delete credential sets with a
  per-identity lock around read-modify-write sequences
"""
