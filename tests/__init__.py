"""Test suite for the lab assistant."""
