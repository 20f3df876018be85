"""
Integration tests for colshift.

These tests require a PostgreSQL instance, provisioned automatically via
testcontainers. They are skipped when testcontainers or Docker is not
available.

Run integration tests:
    pytest tests/integration/ -v

Run only the end-to-end migration tests:
    pytest tests/integration/ -v -m e2e

Skip integration tests:
    pytest tests/ -v -m "not integration"
"""
