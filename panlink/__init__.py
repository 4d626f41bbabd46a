"""
panlink - cloud-storage share link search aggregator.
"""

__version__ = "0.1.0"
