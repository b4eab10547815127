import jax
import jax.numpy as jnp
from typing import Protocol, TypeVar, runtime_checkable
from typing import NamedTuple, Tuple

State = TypeVar('State', bound=NamedTuple)

def _sum_elements(state: NamedTuple) -> float:
   """Compute sum of all elements in a state."""
   sums = jax.tree_util.tree_map(
      lambda x: jnp.sum(x) if x is not None else 0., state)
   return jnp.sum(jnp.array(jax.tree_util.tree_leaves(sums)))

def _state_op(op, state1: NamedTuple, state2: NamedTuple) -> NamedTuple:
   """Apply operation between two states. Fields that are None in either stay None."""
   if type(state1) != type(state2):
      raise TypeError(f"Cannot operate between {type(state1)} and {type(state2)}")
   return type(state1)(*[op(x,y) if (x is not None and y is not None) else None
      for x, y in zip(state1, state2)])

def _scalar_op(op, state: NamedTuple, scalar) -> NamedTuple:
   """Apply operation between state and scalar."""
   return jax.tree_util.tree_map(
      lambda x: op(x,scalar) if x is not None else None, state)

def _inner_product(state1: NamedTuple, state2: NamedTuple) -> float:
   """Euclidean inner product over the fields present in both states."""
   if type(state1) != type(state2):
      raise TypeError(f"Cannot compute inner product between {type(state1)} and {type(state2)}")
   total = 0.
   for x, y in zip(state1, state2):
      if x is not None and y is not None: total = total + jnp.sum(x*y)
   return total

def zeros_like(state: NamedTuple) -> NamedTuple:
   return jax.tree_util.tree_map(lambda x: jnp.zeros_like(x), state)

def add_operators(cls):
   """Decorator to add linear-space operators to a NamedTuple class."""
   @jax.jit
   def add(self, other):
      if hasattr(other, '_fields'): return _state_op(jnp.add, self, other)
      return _scalar_op(jnp.add, self, other)

   @jax.jit
   def sub(self, other):
      if hasattr(other, '_fields'): return _state_op(jnp.subtract, self, other)
      return _scalar_op(jnp.subtract, self, other)

   @jax.jit
   def mul(self, other):
      if hasattr(other, '_fields'): return _state_op(jnp.multiply, self, other)
      return _scalar_op(jnp.multiply, self, other)

   @jax.jit
   def neg(self):
      return _scalar_op(jnp.multiply, self, -1.0)

   @jax.jit
   def radd(self, other):
      return self.__add__(other)

   @jax.jit
   def rmul(self, other):
      return self.__mul__(other)

   @jax.jit
   def sum(self):
      return _sum_elements(self)

   @jax.jit
   def dot(self, other):
      return _inner_product(self, other)

   cls.__add__ = add
   cls.__sub__ = sub
   cls.__mul__ = mul
   cls.__neg__ = neg
   cls.__radd__ = radd
   cls.__rmul__ = rmul
   cls.sum = sum
   cls.dot = dot
   cls.zeros_like = zeros_like

   return cls

@runtime_checkable
class LinearOperator(Protocol[State]):
   """Protocol for linear maps with a hand-coded adjoint.

   forward and adjoint must satisfy <forward(x), y> == <x, adjoint(y)> for
   every pair of states; see baljax.utils.diagnostics.adjoint_test.
   """
   def forward(self, state: State) -> State:
      ...

   def adjoint(self, state: State) -> State:
      ...

   @property
   def state_info(self) -> dict[str, Tuple[int, ...]]:
      """Shape of every field the operator reads or writes."""
      ...
