#!/usr/bin/env python3
import logging
import numpy as np
from typing import NamedTuple, Tuple
from baljax.utils.grid import GridDecomposition

logger = logging.getLogger(__name__)

class LatitudeMap(NamedTuple):
	"""Location of the analysis grid in statistics-grid units (1-based).
	rllat: [nlat,nlon] whole domain
	rllat1: [lat2,lon2] restricted to the tile
	f1: [lat2,lon2] sin(lat)/sin(mid-domain lat), ones unless requested
	llmin, llmax: table rows needed by the domain, widened by one and clamped to [1,mlat]
	"""
	rllat: np.ndarray
	rllat1: np.ndarray
	f1: np.ndarray
	llmin: int
	llmax: int

def locate_latitudes(region_lat: np.ndarray, clat: np.ndarray) -> Tuple[np.ndarray, int, int]:
	"""Fractional index of each latitude on the increasing axis clat (both in radians).
	Values at or above clat[-1] map to mlat, below clat[0] to 1.
	"""
	region_lat = np.asarray(region_lat, dtype=np.float64)
	clat = np.asarray(clat, dtype=np.float64)
	mlat = clat.size
	if mlat < 1: raise ValueError("Latitude axis is empty")
	if np.any(np.diff(clat) <= 0.): raise ValueError("Latitude axis must be strictly increasing")
	above = region_lat >= clat[-1]
	below = region_lat < clat[0]
	inside = ~(above | below)
	# 1-based m with clat[m] <= lat < clat[m+1]
	m = np.searchsorted(clat, region_lat, side='right')
	m = np.clip(m, 1, max(mlat-1, 1))
	lo = clat[m-1]
	hi = clat[np.minimum(m, mlat-1)]
	with np.errstate(divide='ignore', invalid='ignore'):
		frac = np.where(inside, (region_lat-lo)/np.where(hi > lo, hi-lo, 1.), 0.)
	rllat = np.where(above, float(mlat), np.where(below, 1., m + frac))
	touched = np.where(above, mlat, np.where(below, 1, m))
	llmax = min(mlat, int(touched.max())+1)
	llmin = max(1, int(touched.min())-1)
	return rllat, llmin, llmax

def restrict_to_tile(rllat: np.ndarray, grid: GridDecomposition) -> np.ndarray:
	"""Copy the domain map onto the tile, halo points clamped to the domain edge."""
	return grid.restrict(rllat)

def shape_factor(grid: GridDecomposition) -> np.ndarray:
	"""sin(lat)/sin(lat at the domain centre) on the tile."""
	ic = max(grid.nlat//2-1, 0)
	jc = max(grid.nlon//2-1, 0)
	fmid = 1./np.sin(grid.region_lat[ic, jc])
	return np.sin(grid.restrict(grid.region_lat))*fmid

class LatitudeInterpolator:
	"""Maps model-grid latitudes onto the coarse statistics latitude axis."""
	def __init__(self, clat_degrees: np.ndarray):
		self.clat = np.deg2rad(np.asarray(clat_degrees, dtype=np.float64))
		self.mlat = self.clat.size

	def locate(self, grid: GridDecomposition, fstat: bool = False) -> LatitudeMap:
		rllat, llmin, llmax = locate_latitudes(grid.region_lat, self.clat)
		rllat1 = restrict_to_tile(rllat, grid)
		f1 = shape_factor(grid) if fstat else np.ones(grid.shape)
		logger.info("Latitude table rows %d..%d of %d used by the domain", llmin, llmax, self.mlat)
		return LatitudeMap(rllat=rllat, rllat1=rllat1, f1=f1, llmin=llmin, llmax=llmax)

	@staticmethod
	def weights(latmap: LatitudeMap) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
		"""Bilinear weights on the tile: (l, l2, dl1, dl2), l and l2 0-based table rows."""
		l = np.floor(latmap.rllat1).astype(np.int64)
		l2 = np.minimum(l+1, latmap.llmax)
		dl2 = latmap.rllat1 - l
		dl1 = 1. - dl2
		return l-1, l2-1, dl1, dl2
