"""
Token validation package.

- token_validator: signature, issuer, audience and expiry checks.
- profile_resolver: userinfo lookup with soft-fail semantics and the
  precedence rules shared with the token-claims fallback.
"""
