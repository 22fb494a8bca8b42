"""
Compound synchronization: keeps a relational compound store in sync with
large, periodically updated SD file corpora.
"""

__version__ = "0.1.0"
