"""Core numerical building blocks."""
