"""
Shared utilities for the Click Ledger.

Common building blocks consumed by the service and its test tooling:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- base_service: FastAPI application shell
- test_helpers: Signing keys, token minting and HTTP stubs for tests

Do not import from service packages into shared/.
"""
