"""
Test fixtures for the sales agent test suite.

This package provides centralized fixtures (response builders, tools,
stores, span capture) shared by all test modules.
"""
