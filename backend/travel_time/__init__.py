"""
Travel-time routing over a Valhalla engine.
"""

__version__ = "0.4.0"
