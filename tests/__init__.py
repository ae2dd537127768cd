"""Test suite for morphnorm.

Test organization:
- fixtures/: Mock screen table generators
- unit/: Unit tests for individual modules

Run tests with:
    pytest tests/
    pytest tests/unit/
    pytest tests/ -v --tb=short
"""
