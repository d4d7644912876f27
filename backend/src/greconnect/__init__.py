"""Realtime messaging and call coordination primitives for GreConnect."""
