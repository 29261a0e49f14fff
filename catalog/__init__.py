"""
Model Catalog

Schema introspection, capability resolution and metadata compilation.
"""

__version__ = "1.0.0"
