#!/usr/bin/env python3
import logging
import yaml
from pathlib import Path
from typing import NamedTuple, Union
from baljax.utils.errors import ConfigurationError

logger = logging.getLogger(__name__)

class BalanceConfig(NamedTuple):
   nsig: int
   regional: bool = True
   twodvar_regional: bool = False   # 2-D only (surface) regional analysis
   fstat: bool = False              # separate f from balance projection (regional)
   nobalance: bool = False          # univariate analysis
   extended: bool = False           # convective-scale multivariate regression chain
   fpsproj: bool = True             # full nsig projection of st onto ps (global)
   fut2ps: bool = False             # project unbalanced temperature onto ps (global)
   nvmodes_keep: int = 0            # vertical modes kept by the strong constraint
   nstrong: int = 0                 # strong constraint iterations
   tlnmc_option: int = 0
   lsqrtb: bool = False
   manifest_file: str = 'regcoeff.txt'
   stats_file: str = 'berror_stats'

   @property
   def strong_enabled(self) -> bool:
      """Whether the balance transforms call the strong constraint at all."""
      return self.lsqrtb or self.tlnmc_option in (1, 4)

def validate_config(config: BalanceConfig) -> BalanceConfig:
   if config.nsig <= 0:
      raise ConfigurationError(f"nsig must be positive, got {config.nsig}")
   if config.extended and not config.regional:
      raise ConfigurationError("Extended regression chain is only available for regional analyses")
   if config.twodvar_regional and not config.regional:
      raise ConfigurationError("twodvar_regional requires regional=True")
   return config

def load_config(filename: Union[str, Path]) -> BalanceConfig:
   """Read a YAML mapping of BalanceConfig fields."""
   fpath = Path(filename)
   if not fpath.exists(): raise ConfigurationError(f"Configuration file not found: {fpath}")
   with open(fpath, "r") as f:
      raw = yaml.safe_load(f) or {}
   if not isinstance(raw, dict):
      raise ConfigurationError(f"{fpath} must contain a mapping, got {type(raw).__name__}")
   # allow a top-level 'balance' section
   raw = raw.get('balance', raw)
   unknown = set(raw) - set(BalanceConfig._fields)
   if unknown:
      raise ConfigurationError(f"Unknown balance options in {fpath}: {sorted(unknown)}")
   if 'nsig' not in raw:
      raise ConfigurationError(f"{fpath} does not define nsig")
   config = validate_config(BalanceConfig(**raw))
   logger.info("Loaded balance configuration from %s: %s", fpath, config)
   return config
