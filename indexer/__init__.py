"""Ruling data model, extraction, embeddings, stores and relevance ranking."""
