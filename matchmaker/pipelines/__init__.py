"""Pipelines for embedding generation and match generation.

Each step is callable independently so the same code serves realtime requests
and batch runs.
"""
