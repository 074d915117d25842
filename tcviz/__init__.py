"""
Tropical cyclone track explorer.

Scenario state, density aggregation and data access for browsing simulated
cyclone tracks from the d4PDF climate ensembles.
"""

__version__ = "0.1.0"
