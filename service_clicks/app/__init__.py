"""
Click Service package for the Click Ledger.

Records click events for authenticated end users and serves per-user and
aggregate statistics.

- app.main: Application entrypoint that wires routes and lifecycle.
- app.jwks: Signing key cache for the identity provider's key set.
- app.validation: Token verification and profile resolution.
- app.domain: Identity middleware and FastAPI dependencies.
- app.ledger: The users/clicks ledger and its data models.
- app.persistence: Async query executors (SQLite, PostgreSQL).

Module import must not perform network or database I/O; all of it happens
in route handlers or the lifespan hooks.
"""
