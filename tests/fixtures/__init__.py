"""Test fixtures for morphnorm.

Provides mock data generators and test utilities.
"""

from .mock_screen import (
    create_mock_screen,
    create_end_to_end_table,
    create_minimal_table,
)

__all__ = [
    "create_mock_screen",
    "create_end_to_end_table",
    "create_minimal_table",
]
