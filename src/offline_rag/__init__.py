"""Offline retrieval-augmented memory for local language models."""
