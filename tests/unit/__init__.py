"""Unit tests for individual harness modules."""
