"""Concrete adapters for the interfaces in ``docintel.interfaces``."""
