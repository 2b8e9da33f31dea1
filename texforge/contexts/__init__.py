"""Bounded contexts of texforge."""
