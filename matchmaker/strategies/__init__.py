"""Swappable strategies composing the matching pipeline.

Retrieval, similarity, filtering, ranking and reason generation are each an
explicit interface with one or more implementations, wired by constructor in
`matchmaker.services`.
"""
