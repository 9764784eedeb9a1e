"""
Core logic for the storage pipeline.

This module is framework-agnostic - it doesn't import FastAPI or httpx.
The signer is pure computation, so it can be checked against published
test vectors in isolation.
"""
