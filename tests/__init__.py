"""Tunnel operator tests."""
