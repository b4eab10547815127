#!/usr/bin/env python3
import numpy as np
from typing import NamedTuple, List

class GridDecomposition(NamedTuple):
	"""Horizontal tile description supplied by the domain decomposition.
	region_lat: physical latitude (radians) of every global gridpoint, [nlat,nlon]
	istart, jstart: 0-based global index of the first interior row/column of the tile
	lat2, lon2: local extents including a one-point halo on each side
	"""
	nlat: int
	nlon: int
	region_lat: np.ndarray
	istart: int
	jstart: int
	lat2: int
	lon2: int

	def row_indices(self, lo: int = 0, hi: int = None) -> np.ndarray:
		"""Global row of each local row, clamped to [lo, hi]."""
		hi = self.nlat-1 if hi is None else hi
		return np.clip(self.istart + np.arange(self.lat2) - 1, lo, hi)

	def col_indices(self, lo: int = 0, hi: int = None) -> np.ndarray:
		hi = self.nlon-1 if hi is None else hi
		return np.clip(self.jstart + np.arange(self.lon2) - 1, lo, hi)

	def restrict(self, field: np.ndarray) -> np.ndarray:
		"""Restrict a global [..., nlat, nlon] field to this tile."""
		return field[..., self.row_indices()[:, None], self.col_indices()[None, :]]

	@property
	def shape(self) -> tuple:
		return (self.lat2, self.lon2)

def single_tile(region_lat: np.ndarray, halo: bool = False) -> GridDecomposition:
	"""Whole domain as one tile. Without halo the tile coincides with the grid."""
	region_lat = np.asarray(region_lat, dtype=np.float64)
	nlat, nlon = region_lat.shape
	if halo:
		return GridDecomposition(nlat, nlon, region_lat, 0, 0, nlat+2, nlon+2)
	return GridDecomposition(nlat, nlon, region_lat, 1, 1, nlat, nlon)

def split_rows(region_lat: np.ndarray, ntile: int) -> List[GridDecomposition]:
	"""Split the domain into ntile row bands of equal height (no halo)."""
	region_lat = np.asarray(region_lat, dtype=np.float64)
	nlat, nlon = region_lat.shape
	if nlat % ntile != 0:
		raise ValueError(f"nlat={nlat} is not divisible by ntile={ntile}")
	rows = nlat//ntile
	return [GridDecomposition(nlat, nlon, region_lat, 1+n*rows, 1, rows, nlon) for n in range(ntile)]
