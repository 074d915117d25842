"""Data API and density resource clients."""

from .cyclones import CycloneDataManager, CycloneDataset, parse_density_csv

__all__ = [
    "CycloneDataManager",
    "CycloneDataset",
    "parse_density_csv",
]
