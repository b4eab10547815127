#!/usr/bin/env python3
import os, pickle, logging
import jax
import jax.numpy as jnp
import numpy as np
import xarray as xr
from typing import Union, Optional, Dict, Any, Tuple, NamedTuple
from pathlib import Path
from baljax.models.state import BalanceCoefficients, BalanceFlags, BalanceState, ControlState

logger = logging.getLogger(__name__)

def _default_dims(array) -> Tuple[str, ...]:
   return ('lev', 'lat', 'lon') if np.ndim(array) == 3 else ('lat', 'lon')

def write_control_states(filename: Union[str, Path], states: Dict[str, NamedTuple],
                         metadata: Optional[Dict[str, Any]] = None,
                         coords: Optional[Dict[str, jax.Array]] = None) -> None:
   """Write several control states to one NetCDF file.
   Args:
      filename: Output file path
      states: Dictionary mapping names to states
               e.g. {"input": ctl, "balanced": ctl_bal}
      metadata: Optional metadata dictionary
      coords: Optional coordinate arrays (lev, lat, lon)
   Fields that are None are skipped. Variables are named <field>_<name>.
   """
   fpath = Path(filename)
   if fpath.exists(): os.remove(fpath)
   ds = xr.Dataset()
   if coords:
      for name, values in coords.items(): ds.coords[name] = np.asarray(values)
   for state_name, state in states.items():
      for field in state._fields:
         array = getattr(state, field)
         if array is None: continue
         ds[f"{field}_{state_name}"] = xr.DataArray(np.asarray(array), dims=_default_dims(array))
   if metadata: ds.attrs.update(metadata)
   ds.to_netcdf(fpath)

def write_control_state(filename: Union[str, Path], state: NamedTuple,
                        metadata: Optional[Dict[str, Any]] = None,
                        coords: Optional[Dict[str, jax.Array]] = None) -> None:
   """Write a single control state, one variable per non-None field."""
   fpath = Path(filename)
   if fpath.exists(): os.remove(fpath)
   ds = xr.Dataset()
   if coords:
      for name, values in coords.items(): ds.coords[name] = np.asarray(values)
   for field in state._fields:
      array = getattr(state, field)
      if array is None: continue
      ds[field] = xr.DataArray(np.asarray(array), dims=_default_dims(array))
   if metadata: ds.attrs.update(metadata)
   ds.to_netcdf(fpath)

def read_control_state(filename: Union[str, Path], state_type: type = ControlState,
                       suffix: Optional[str] = None) -> NamedTuple:
   """Read a control state. Optional fields (those with a default) may be absent."""
   fpath = Path(filename)
   if not fpath.exists(): raise FileNotFoundError(f"State file not found: {fpath}")
   with xr.open_dataset(fpath) as ds:
      fields = {}
      for field in state_type._fields:
         name = field if suffix is None else f"{field}_{suffix}"
         if name in ds: fields[field] = jnp.array(ds[name].values)
         elif field not in state_type._field_defaults:
            raise KeyError(f"Field {name} not found in file {fpath}")
   return state_type(**fields)

def save_balance_state(bal: BalanceState, filepath: Union[str, Path]) -> None:
   """Save a built BalanceState so later runs of the same cycle can skip the build."""
   os.makedirs(os.path.dirname(os.path.abspath(filepath)), exist_ok=True)
   coeffs = {field: None if value is None else np.asarray(value)
             for field, value in zip(bal.coeffs._fields, bal.coeffs)}
   data = {'flags': bal.flags._asdict(), 'coeffs': coeffs,
           '_metadata': {'type': type(bal).__name__, 'fields': list(bal.coeffs._fields)}}
   with open(filepath, 'wb') as f: pickle.dump(data, f)
   logger.info("Saved balance state to %s", filepath)

def load_balance_state(filepath: Union[str, Path]) -> BalanceState:
   if not os.path.exists(filepath):
      raise FileNotFoundError(f"Balance state file not found: {filepath}")
   with open(filepath, 'rb') as f: data = pickle.load(f)
   metadata = data.pop('_metadata', None)
   if metadata is not None and metadata['type'] != BalanceState.__name__:
      logger.warning("Loaded object has type %s, expected %s", metadata['type'], BalanceState.__name__)
   flags = BalanceFlags(**data['flags'])
   coeffs = BalanceCoefficients(**{field: None if value is None else jnp.array(value)
                                   for field, value in data['coeffs'].items()})
   return BalanceState(flags=flags, coeffs=coeffs)
