"""Tests for the meetload multi-participant meeting load tester."""
