"""Core research logic."""
