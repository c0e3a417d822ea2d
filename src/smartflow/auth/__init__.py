"""Authentication.

Tokens are issued by the tracker's auth service; this package only
verifies them. Two ways to present the same JWT:
1. Authorization: Bearer <token> header (regular API calls)
2. ?token=<token> query parameter (the SSE stream; EventSource
   cannot set headers)

Both go through verify_token, so signing key and expiry rules match.
"""
