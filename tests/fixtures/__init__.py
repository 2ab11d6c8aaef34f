"""Schemas, a test application and collaborator doubles shared by the test suite."""
