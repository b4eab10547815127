#!/usr/bin/env python3
"""Canonical slots of the extra regression coefficients.

The chain order is vor, div, t, ps, q, w, ql, qi, qr, qs, qg, dbz. Every
variable is regressed on all variables before it. Pairs of 3-D variables
are three-level coefficients ([nsig,nsig] per point), pairs involving the
surface pressure are two-level ([nsig] per point).

Names in the regression manifest use the statistics-file labels: the pair
(predictor, target) is called regcoeff_<pred>_u_<target>, except when the
predictor is the vorticity ('u'), which is written regcoeff_u_<target>.
"""
from typing import Dict, List, Optional, Tuple

CHAIN_ORDER = ('vor', 'div', 't', 'ps', 'q', 'w', 'ql', 'qi', 'qr', 'qs', 'qg', 'dbz')
FIELDS3D = tuple(f for f in CHAIN_ORDER if f != 'ps')

LABELS = {'vor': 'u', 'div': 'v', 't': 't', 'ps': 'ps', 'q': 'rh', 'w': 'w',
          'ql': 'qcloud', 'qi': 'qice', 'qr': 'qrain', 'qs': 'qsnow', 'qg': 'qgraup', 'dbz': 'dbz'}

NUM_THREE_LEVEL = 55
NUM_TWO_LEVEL = 11

def pair_name(pred: str, target: str) -> str:
   if pred == 'vor': return f"regcoeff_u_{LABELS[target]}"
   return f"regcoeff_{LABELS[pred]}_u_{LABELS[target]}"

def _three_level_pairs() -> List[Tuple[str, str]]:
   return [(p, q) for i, p in enumerate(FIELDS3D) for q in FIELDS3D[i+1:]]

def _two_level_pairs() -> List[Tuple[str, str]]:
   ips = CHAIN_ORDER.index('ps')
   return [(p, 'ps') for p in CHAIN_ORDER[:ips]] + [('ps', q) for q in CHAIN_ORDER[ips+1:]]

THREE_LEVEL_PAIRS = tuple(_three_level_pairs())
TWO_LEVEL_PAIRS = tuple(_two_level_pairs())

# name -> 0-based slot, built once
THREE_LEVEL_SLOTS: Dict[str, int] = {pair_name(p, q): n for n, (p, q) in enumerate(THREE_LEVEL_PAIRS)}
TWO_LEVEL_SLOTS: Dict[str, int] = {pair_name(p, q): n for n, (p, q) in enumerate(TWO_LEVEL_PAIRS)}
PAIR_SLOTS: Dict[Tuple[str, str], int] = {**{pq: n for n, pq in enumerate(THREE_LEVEL_PAIRS)},
                                          **{pq: n for n, pq in enumerate(TWO_LEVEL_PAIRS)}}

assert len(THREE_LEVEL_SLOTS) == NUM_THREE_LEVEL
assert len(TWO_LEVEL_SLOTS) == NUM_TWO_LEVEL

def resolve(name: str, rank: int) -> Optional[int]:
   """Slot of a manifest entry, or None when the name is unknown.
   rank < 3 selects the two-level table, rank == 3 the three-level table."""
   table = THREE_LEVEL_SLOTS if rank == 3 else TWO_LEVEL_SLOTS
   return table.get(name.strip())

def predictors(target: str) -> Tuple[str, ...]:
   """Variables the target is regressed on, in chain order."""
   return CHAIN_ORDER[:CHAIN_ORDER.index(target)]
