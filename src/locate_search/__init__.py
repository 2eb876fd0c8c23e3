"""
Locate Search - live file listings backed by a locate database.

Builds the index with updatedb when it is missing, runs locate over it and
streams the matches into a listing surface, locally or on a remote host.
"""

__version__ = "1.0.0"
__author__ = "Seba Battig"
