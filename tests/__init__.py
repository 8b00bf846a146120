"""
Tests package - Test suite for the Nebari operator.

Contains:
- unit/: Unit tests for individual components
"""
