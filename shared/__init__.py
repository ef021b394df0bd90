"""Shared utilities for MadaHost services."""
