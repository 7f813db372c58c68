"""
Tests for the circuit lab notebook.
"""
