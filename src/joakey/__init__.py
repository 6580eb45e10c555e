"""Encrypted buyer/jockey chat service."""
