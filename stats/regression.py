#!/usr/bin/env python3
import logging
import numpy as np
import jax.numpy as jnp
from pathlib import Path
from typing import List, Optional, Tuple, Union
from baljax.models.state import BalanceCoefficients, BalanceFlags, BalanceState
from baljax.stats.berror import RegressionStats, read_balance_stats, read_regcoeff_manifest
from baljax.stats.canonical import NUM_THREE_LEVEL, NUM_TWO_LEVEL, resolve
from baljax.stats.latitude import LatitudeInterpolator, LatitudeMap
from baljax.utils.config import BalanceConfig, validate_config
from baljax.utils.errors import BoundsViolation, ConfigurationError, UnmappedVariableName
from baljax.utils.grid import GridDecomposition

PSFC_FRACTION = 0.8

def cutoff_level(prsl_avg: np.ndarray, psfc_avg: float) -> int:
	"""First level (1-based, counting up from the lowest level) whose mean pressure
	is below 0.8 of the mean surface pressure; nsig when none is."""
	prsl_avg = np.asarray(prsl_avg, dtype=np.float64)
	below = np.nonzero(prsl_avg < PSFC_FRACTION*psfc_avg)[0]
	return int(below[0])+1 if below.size > 0 else prsl_avg.size

def regime_bins(regime_mask: Optional[np.ndarray], nbins: int, shape: Tuple[int, ...]) -> np.ndarray:
	"""Sub-table per point: mask < -0.5 -> 2nd, > 0.5 -> 3rd, otherwise 1st (0-based 1, 2, 0)."""
	if regime_mask is None: return np.zeros(shape, dtype=np.int64)
	regime_mask = np.broadcast_to(np.asarray(regime_mask), shape)
	bins = np.where(regime_mask < -0.5, 1, np.where(regime_mask > 0.5, 2, 0))
	return np.minimum(bins, max(nbins-1, 0))

class RegressionBuilder:
	"""Builds the BalanceState of one tile from the balance statistics."""
	def __init__(self, config: BalanceConfig, grid: GridDecomposition):
		self.config = validate_config(config)
		self.grid = grid
		self.logger = logging.getLogger(self.__class__.__name__)
		self.unmapped: List[UnmappedVariableName] = []

	def _check_levels(self, stats: RegressionStats) -> None:
		if stats.nsig != self.config.nsig:
			raise ConfigurationError(f"Statistics have {stats.nsig} levels, configuration expects {self.config.nsig}")

	# ------------------------------------------------------------------------
	# Regional
	# ------------------------------------------------------------------------

	def _weights(self, latmap: LatitudeMap) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
		l, l2, dl1, dl2 = LatitudeInterpolator.weights(latmap)
		if np.any(l+1 < latmap.llmin) or np.any(l+1 > latmap.llmax):
			raise BoundsViolation(f"Latitude index outside table rows {latmap.llmin}..{latmap.llmax}: "
				f"min {int(l.min())+1}, max {int(l.max())+1}")
		return l, l2, dl1, dl2

	@staticmethod
	def _interp(table: np.ndarray, l: np.ndarray, l2: np.ndarray, dl1: np.ndarray, dl2: np.ndarray) -> np.ndarray:
		"""[mlat,...] -> [...,lat2,lon2]"""
		val = dl1[..., None]*table[l].reshape(l.shape+(-1,)) + dl2[..., None]*table[l2].reshape(l.shape+(-1,))
		return np.moveaxis(val, -1, 0).reshape(table.shape[1:]+l.shape)

	def _interp_two_level(self, table: np.ndarray, bins: np.ndarray, l, l2, dl1, dl2) -> np.ndarray:
		"""[mlat,nbins,nsig] -> [nsig,lat2,lon2], sub-table chosen per point and level."""
		k = np.arange(table.shape[-1])[:, None, None]
		return dl1*table[l[None], bins, k] + dl2*table[l2[None], bins, k]

	def _interp_three_level(self, table: np.ndarray, bins: np.ndarray, l, l2, dl1, dl2) -> np.ndarray:
		"""[mlat,nbins,nsig,nsig] -> [nsig,nsig,lat2,lon2], sub-table chosen by the predictor level."""
		nsig = table.shape[-1]
		k = np.arange(nsig)[:, None, None, None]
		m = np.arange(nsig)[None, :, None, None]
		b = bins[None, :]
		return dl1*table[l[None, None], b, k, m] + dl2*table[l2[None, None], b, k, m]

	def _extra_tables(self, stats: RegressionStats, regime_mask: Optional[np.ndarray],
							l, l2, dl1, dl2) -> Tuple[np.ndarray, np.ndarray]:
		nsig = self.config.nsig
		shape = (nsig,) + self.grid.shape
		evik2 = np.zeros((NUM_TWO_LEVEL,)+shape)
		evik3 = np.zeros((NUM_THREE_LEVEL, nsig)+shape)
		if stats.evi2 is None or stats.evi3 is None:
			raise ConfigurationError("Extended mode requires the extra regression tables; read the statistics with the manifest")
		if regime_mask is None: self.logger.warning("No regime mask given, using the first regression sub-table everywhere")
		bins = regime_bins(regime_mask, stats.nbins, shape)
		for rank, names, tables, target in ((2, stats.names2, stats.evi2, evik2), (3, stats.names3, stats.evi3, evik3)):
			for name, table in zip(names, tables):
				slot = resolve(name, rank)
				if slot is None:
					self.unmapped.append(UnmappedVariableName(name, rank))
					self.logger.warning("Extra regression variable %s (rank %d) has no canonical slot, coefficient left at zero", name, rank)
					continue
				if rank == 3: target[slot] = self._interp_three_level(table, bins, l, l2, dl1, dl2)
				else: target[slot] = self._interp_two_level(table, bins, l, l2, dl1, dl2)
				self.logger.debug("Extra regression variable %s -> slot %d", name, slot+1)
		return evik2, evik3

	def build_regional(self, stats: RegressionStats, prsl_avg: np.ndarray, psfc_avg: float,
							regime_mask: Optional[np.ndarray] = None) -> BalanceState:
		"""Interpolate coarse coefficients onto the tile.
		prsl_avg: [nsig] mean layer pressure of the guess, psfc_avg its mean surface pressure
		regime_mask: [nsig,lat2,lon2] land/ocean/other indicator for the extra tables
		"""
		config = self.config
		self._check_levels(stats)
		nsig = config.nsig
		shape = self.grid.shape
		latmap = LatitudeInterpolator(stats.clat).locate(self.grid, fstat=config.fstat)
		l, l2, dl1, dl2 = self._weights(latmap)

		ke = cutoff_level(prsl_avg, psfc_avg)
		ke_vp = ke if config.twodvar_regional else ke-1
		self.logger.info("Velocity potential balanced with streamfunction on levels 1..%d", ke_vp)

		bvk = np.zeros((nsig,)+shape)
		agvk = np.zeros((nsig, nsig)+shape)
		wgvk = np.zeros((nsig,)+shape)
		evik2 = np.zeros((NUM_TWO_LEVEL, nsig)+shape) if config.extended else None
		evik3 = np.zeros((NUM_THREE_LEVEL, nsig, nsig)+shape) if config.extended else None
		lm = int((latmap.llmax+latmap.llmin)*0.5)
		agvk_lm = np.array(stats.agv[lm-1], dtype=np.float64)
		if not config.twodvar_regional:
			bvk = self._interp(stats.bv, l, l2, dl1, dl2)
			bvk[ke_vp:] = 0.
			agvk = self._interp(stats.agv, l, l2, dl1, dl2)
			wgvk = self._interp(stats.wgv, l, l2, dl1, dl2)
			if config.extended:
				evik2, evik3 = self._extra_tables(stats, regime_mask, l, l2, dl1, dl2)

		if config.twodvar_regional or config.nobalance:
			self.logger.warning("***WARNING*** running univariate analysis.")
			bvk[:] = 0.; agvk[:] = 0.; wgvk[:] = 0.; agvk_lm[:] = 0.
			if config.extended: evik2[:] = 0.; evik3[:] = 0.

		flags = BalanceFlags(nsig=nsig, regional=True, fstat=config.fstat, extended=config.extended,
			fpsproj=config.fpsproj, fut2ps=config.fut2ps,
			ke_vp=ke_vp, llmin=latmap.llmin, llmax=latmap.llmax)
		coeffs = BalanceCoefficients(bvk=jnp.asarray(bvk), agvk=jnp.asarray(agvk), agvk_lm=jnp.asarray(agvk_lm),
			wgvk=jnp.asarray(wgvk), f1=jnp.asarray(latmap.f1),
			evik3=None if evik3 is None else jnp.asarray(evik3),
			evik2=None if evik2 is None else jnp.asarray(evik2))
		return BalanceState(flags=flags, coeffs=coeffs)

	# ------------------------------------------------------------------------
	# Global
	# ------------------------------------------------------------------------

	def build_global(self, stats: RegressionStats) -> BalanceState:
		"""Global statistics are on the model latitude rows; the tile copies its rows,
		polar rows replaced by their neighbours."""
		config = self.config
		grid = self.grid
		self._check_levels(stats)
		if stats.mlat != grid.nlat:
			raise ConfigurationError(f"Global statistics have {stats.mlat} latitudes, grid has {grid.nlat}")
		if grid.nlat < 3: raise ConfigurationError("Global grid needs at least 3 latitude rows")
		rows = grid.row_indices(1, grid.nlat-2)
		agvz = np.moveaxis(stats.agv[rows], 0, -1)
		bvz = stats.bv[rows].T
		wgvz = stats.wgv[rows].T
		pput = np.zeros_like(wgvz)
		if config.fut2ps:
			if stats.pput is None: self.logger.warning("fut2ps requested but statistics have no pput record, using zero")
			else: pput = stats.pput[rows].T
		if config.nobalance:
			self.logger.warning("***WARNING*** running univariate analysis.")
			agvz = np.zeros_like(agvz); bvz = np.zeros_like(bvz)
			wgvz = np.zeros_like(wgvz); pput = np.zeros_like(pput)
		flags = BalanceFlags(nsig=config.nsig, regional=False, fpsproj=config.fpsproj, fut2ps=config.fut2ps,
			ke_vp=config.nsig, llmin=1, llmax=stats.mlat)
		coeffs = BalanceCoefficients(bvz=jnp.asarray(bvz), agvz=jnp.asarray(agvz),
			wgvz=jnp.asarray(wgvz), pput=jnp.asarray(pput))
		return BalanceState(flags=flags, coeffs=coeffs)

	def build(self, stats: RegressionStats, prsl_avg: Optional[np.ndarray] = None, psfc_avg: Optional[float] = None,
				regime_mask: Optional[np.ndarray] = None) -> BalanceState:
		if not self.config.regional: return self.build_global(stats)
		if prsl_avg is None or psfc_avg is None:
			raise ConfigurationError("Regional balance needs the mean guess pressure profile and surface pressure")
		return self.build_regional(stats, prsl_avg, psfc_avg, regime_mask)

	def load(self, prsl_avg: Optional[np.ndarray] = None, psfc_avg: Optional[float] = None,
				regime_mask: Optional[np.ndarray] = None, workdir: Union[str, Path] = '.') -> BalanceState:
		"""Read the statistics (and manifest in extended mode) named in the configuration and build."""
		workdir = Path(workdir)
		manifest = None
		if self.config.extended:
			manifest_path = workdir/self.config.manifest_file
			if not manifest_path.exists(): raise ConfigurationError(f"Cannot find {manifest_path}")
			manifest = read_regcoeff_manifest(manifest_path)
		stats = read_balance_stats(workdir/self.config.stats_file, manifest=manifest)
		return self.build(stats, prsl_avg, psfc_avg, regime_mask)
