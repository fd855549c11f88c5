"""Shared test fixtures and fakes for fallible tests."""
