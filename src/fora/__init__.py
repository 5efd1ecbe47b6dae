"""Fora: prompt-to-animation job service."""
