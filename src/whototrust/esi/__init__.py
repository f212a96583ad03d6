"""
EVE SSO and ESI Integration

This package talks to the EVE Online single sign-on service and the ESI REST
API on behalf of authorized characters.

Key Components:
- errors.py: Error taxonomy for token and request failures
- oauth.py: Authorization URL, code exchange and token refresh
- request.py: Authenticated request engine with retry and refresh-on-401
- identity.py: Concurrent synchronization of every character of a main identity

The request flow follows these steps:
1. Build a GET request with bearer authorization and standard headers
2. On 401, refresh the token and replay the request once
3. Map failing statuses to transient or terminal errors
4. Retry transient errors with exponential backoff and jitter
"""
