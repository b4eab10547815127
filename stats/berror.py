#!/usr/bin/env python3
"""Background-error balance statistics store.

Binary layout: Fortran unformatted sequential records, little endian, each
record framed by its int32 byte count. Arrays are stored row-major.
	1. int32  [nsig, mlat, npput, nbins]
	2. float32 clat[mlat]                  latitude axis in degrees, increasing
	3. float32 agv[mlat,nsig,nsig]         st -> t, [lat, target level, predictor level]
	4. float32 bv[mlat,nsig]               st -> vp
	5. float32 wgv[mlat,nsig]              st -> ps
	6. float32 pput[mlat,nsig]             t -> ps, present when npput == 1
	7. float32 evi2[mlat,nbins,nsig]       one record per two-level manifest entry
	8. float32 evi3[mlat,nbins,nsig,nsig]  one record per three-level manifest entry
Records 7 and 8 follow the order of the regression manifest.
"""
import os, logging
import numpy as np
import pandas as pd
import xarray as xr
from pathlib import Path
from typing import BinaryIO, NamedTuple, Optional, Tuple, Union
from baljax.utils.errors import ConfigurationError, StatsFormatError

logger = logging.getLogger(__name__)

class RegressionManifest(NamedTuple):
	names2: Tuple[str, ...]   # rank < 3
	names3: Tuple[str, ...]   # rank == 3

	@property
	def total(self) -> int:
		return len(self.names2) + len(self.names3)

class RegressionStats(NamedTuple):
	nsig: int
	mlat: int
	clat: np.ndarray                    # [mlat] degrees
	agv: np.ndarray                     # [mlat,nsig,nsig]
	bv: np.ndarray                      # [mlat,nsig]
	wgv: np.ndarray                     # [mlat,nsig]
	pput: Optional[np.ndarray] = None   # [mlat,nsig]
	evi2: Optional[np.ndarray] = None   # [n2,mlat,nbins,nsig]
	evi3: Optional[np.ndarray] = None   # [n3,mlat,nbins,nsig,nsig]
	names2: Tuple[str, ...] = ()
	names3: Tuple[str, ...] = ()

	@property
	def nbins(self) -> int:
		for table in (self.evi2, self.evi3):
			if table is not None and table.shape[0] > 0: return table.shape[2]
		return 0

def read_regcoeff_manifest(filename: Union[str, Path]) -> RegressionManifest:
	"""Read the list of extra regression variables.
	Line 1 is the total count, each following line '<name> <rank>'.
	"""
	fpath = Path(filename)
	if not fpath.exists(): raise ConfigurationError(f"Cannot find regression manifest {fpath}")
	with open(fpath, "r") as f:
		header = f.readline().split()
	try: total = int(header[0])
	except (IndexError, ValueError) as e:
		raise ConfigurationError(f"{fpath}: first line must hold the number of extra variables") from e
	try:
		df = pd.read_csv(fpath, sep=r'\s+', skiprows=1, header=None, names=['name', 'rank'],
			nrows=total, dtype={'name': str})
	except pd.errors.EmptyDataError:
		df = pd.DataFrame({'name': [], 'rank': []})
	except ValueError as e:
		raise ConfigurationError(f"{fpath}: cannot parse regression entries ({e})") from e
	ranks = pd.to_numeric(df['rank'], errors='coerce')
	if ranks.isna().any():
		raise ConfigurationError(f"{fpath}: non-integer predictor rank in {df['rank'][ranks.isna()].tolist()}")
	names2 = tuple(df['name'][ranks < 3])
	names3 = tuple(df['name'][ranks == 3])
	if len(names2) + len(names3) != total:
		raise ConfigurationError(f"{fpath}: declared {total} extra variables, found "
			f"{len(names2)} two-level and {len(names3)} three-level")
	logger.info("Regression manifest %s: %d two-level, %d three-level", fpath, len(names2), len(names3))
	return RegressionManifest(names2=names2, names3=names3)

def write_regcoeff_manifest(filename: Union[str, Path], manifest: RegressionManifest) -> None:
	with open(filename, "w") as f:
		f.write(f"{manifest.total}\n")
		for name in manifest.names2: f.write(f"{name} 2\n")
		for name in manifest.names3: f.write(f"{name} 3\n")

# ----------------------------------------------------------------------------
# Binary records
# ----------------------------------------------------------------------------

def _read_record(f: BinaryIO, dtype: str, shape: Tuple[int, ...], what: str) -> np.ndarray:
	marker = f.read(4)
	if len(marker) < 4: raise StatsFormatError(f"Unexpected end of statistics file reading {what}")
	nbytes = int(np.frombuffer(marker, dtype='<i4')[0])
	expected = int(np.prod(shape))*np.dtype(dtype).itemsize
	if nbytes != expected:
		raise StatsFormatError(f"Record {what} holds {nbytes} bytes, expected {expected} for shape {shape}")
	payload = f.read(nbytes)
	trailer = f.read(4)
	if len(payload) < nbytes or len(trailer) < 4 or int(np.frombuffer(trailer, dtype='<i4')[0]) != nbytes:
		raise StatsFormatError(f"Record {what} is truncated")
	return np.frombuffer(payload, dtype=dtype).reshape(shape)

def _write_record(f: BinaryIO, array: np.ndarray, dtype: str) -> None:
	payload = np.ascontiguousarray(array, dtype=dtype).tobytes()
	marker = np.array([len(payload)], dtype='<i4').tobytes()
	f.write(marker); f.write(payload); f.write(marker)

def read_balance_stats(filename: Union[str, Path], manifest: Optional[RegressionManifest] = None) -> RegressionStats:
	"""Read balance regression coefficients.
	Extra regression tables are read only when a manifest is given, since the
	manifest fixes how many of them follow and in which order.
	"""
	fpath = Path(filename)
	if not fpath.exists(): raise FileNotFoundError(f"Statistics file not found: {fpath}")
	with open(fpath, 'rb') as f:
		nsig, mlat, npput, nbins = (int(x) for x in _read_record(f, '<i4', (4,), 'header'))
		if nsig <= 0 or mlat <= 0: raise StatsFormatError(f"Invalid dimensions nsig={nsig}, mlat={mlat}")
		clat = _read_record(f, '<f4', (mlat,), 'clat')
		agv = _read_record(f, '<f4', (mlat, nsig, nsig), 'agv')
		bv = _read_record(f, '<f4', (mlat, nsig), 'bv')
		wgv = _read_record(f, '<f4', (mlat, nsig), 'wgv')
		pput = _read_record(f, '<f4', (mlat, nsig), 'pput') if npput else None
		evi2 = evi3 = None
		names2 = names3 = ()
		if manifest is not None:
			if nbins <= 0 and manifest.total > 0:
				raise StatsFormatError(f"{fpath} has no extra regression tables but the manifest lists {manifest.total}")
			evi2 = np.stack([_read_record(f, '<f4', (mlat, nbins, nsig), name) for name in manifest.names2]) \
				if manifest.names2 else np.zeros((0, mlat, max(nbins, 1), nsig), dtype=np.float32)
			evi3 = np.stack([_read_record(f, '<f4', (mlat, nbins, nsig, nsig), name) for name in manifest.names3]) \
				if manifest.names3 else np.zeros((0, mlat, max(nbins, 1), nsig, nsig), dtype=np.float32)
			names2, names3 = manifest.names2, manifest.names3
	logger.info("Read balance statistics %s: nsig=%d, mlat=%d, pput=%s, extra=%d",
		fpath, nsig, mlat, pput is not None, len(names2)+len(names3))
	return RegressionStats(nsig=nsig, mlat=mlat, clat=clat.astype(np.float64), agv=agv.astype(np.float64),
		bv=bv.astype(np.float64), wgv=wgv.astype(np.float64),
		pput=None if pput is None else pput.astype(np.float64),
		evi2=None if evi2 is None else evi2.astype(np.float64),
		evi3=None if evi3 is None else evi3.astype(np.float64),
		names2=tuple(names2), names3=tuple(names3))

def write_balance_stats(filename: Union[str, Path], stats: RegressionStats) -> None:
	"""Write stats in the binary layout. Extra tables are written in names2/names3 order."""
	fpath = Path(filename)
	if fpath.exists(): os.remove(fpath)
	nbins = stats.nbins
	with open(fpath, 'wb') as f:
		_write_record(f, np.array([stats.nsig, stats.mlat, int(stats.pput is not None), nbins]), '<i4')
		_write_record(f, stats.clat, '<f4')
		_write_record(f, stats.agv, '<f4')
		_write_record(f, stats.bv, '<f4')
		_write_record(f, stats.wgv, '<f4')
		if stats.pput is not None: _write_record(f, stats.pput, '<f4')
		if stats.evi2 is not None:
			for table in stats.evi2: _write_record(f, table, '<f4')
		if stats.evi3 is not None:
			for table in stats.evi3: _write_record(f, table, '<f4')

# ----------------------------------------------------------------------------
# NetCDF
# ----------------------------------------------------------------------------

def write_stats_netcdf(filename: Union[str, Path], stats: RegressionStats, engine: Optional[str] = None) -> None:
	fpath = Path(filename)
	if fpath.exists(): os.remove(fpath)
	ds = xr.Dataset()
	ds.coords['lat'] = np.asarray(stats.clat, dtype=np.float64)
	ds['agv'] = xr.DataArray(stats.agv, dims=('lat', 'sig', 'sigp'))
	ds['bv'] = xr.DataArray(stats.bv, dims=('lat', 'sig'))
	ds['wgv'] = xr.DataArray(stats.wgv, dims=('lat', 'sig'))
	if stats.pput is not None: ds['pput'] = xr.DataArray(stats.pput, dims=('lat', 'sig'))
	if stats.evi2 is not None and len(stats.names2) > 0:
		ds['evi2'] = xr.DataArray(stats.evi2, dims=('var2', 'lat', 'bin', 'sig'))
	if stats.evi3 is not None and len(stats.names3) > 0:
		ds['evi3'] = xr.DataArray(stats.evi3, dims=('var3', 'lat', 'bin', 'sig', 'sigp'))
	ds.attrs['nsig'] = stats.nsig
	if stats.names2: ds.attrs['names2'] = ' '.join(stats.names2)
	if stats.names3: ds.attrs['names3'] = ' '.join(stats.names3)
	ds.to_netcdf(fpath, engine=engine)

def read_stats_netcdf(filename: Union[str, Path], engine: Optional[str] = None) -> RegressionStats:
	fpath = Path(filename)
	if not fpath.exists(): raise FileNotFoundError(f"Statistics file not found: {fpath}")
	with xr.open_dataset(fpath, engine=engine) as ds:
		ds = ds.load()
	for var in ('agv', 'bv', 'wgv'):
		if var not in ds: raise StatsFormatError(f"Field {var} not found in file {fpath}")
	names2 = tuple(str(ds.attrs.get('names2', '')).split())
	names3 = tuple(str(ds.attrs.get('names3', '')).split())
	agv = ds['agv'].values
	return RegressionStats(nsig=agv.shape[1], mlat=agv.shape[0], clat=ds['lat'].values, agv=agv,
		bv=ds['bv'].values, wgv=ds['wgv'].values,
		pput=ds['pput'].values if 'pput' in ds else None,
		evi2=ds['evi2'].values if 'evi2' in ds else None,
		evi3=ds['evi3'].values if 'evi3' in ds else None,
		names2=names2, names3=names3)
