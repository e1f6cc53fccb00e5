"""
Tests Package

Unit tests and shared test helpers for xhs-writer.

Structure:
    - test_*.py: Tests per component
    - fixtures/: Fakes and sample data shared across test modules
"""

__all__ = []
