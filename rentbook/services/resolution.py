"""First-match-wins resolver chains.

Billing decisions follow fixed precedence lists: which rent applies (override,
then revision history, then nothing), which tenancies an entry belongs to
(tenancy id, then tenant id, then GRN), and which payment status to trust
(stored fields, then zero total, then stored amount, then payment sum).
Each step is a small function returning a value or None; `first_match`
runs them in order and returns the first non-None result.
"""

from typing import Callable, Optional, Sequence, TypeVar

T = TypeVar("T")

Resolver = Callable[..., Optional[T]]


def first_match(resolvers: Sequence[Resolver], *args, **kwargs) -> Optional[T]:
    """Return the first non-None result of `resolvers` applied to the arguments.

    Args:
        resolvers: Ordered resolver functions, highest precedence first
        *args, **kwargs: Passed unchanged to every resolver

    Returns:
        First non-None result, or None if every resolver declined
    """
    for resolver in resolvers:
        result = resolver(*args, **kwargs)
        if result is not None:
            return result
    return None


def chain(*resolvers: Resolver) -> Callable[..., Optional[T]]:
    """Combine resolvers into a single callable with first-match-wins semantics."""

    def resolve(*args, **kwargs) -> Optional[T]:
        return first_match(resolvers, *args, **kwargs)

    resolve.resolvers = tuple(resolvers)  # type: ignore[attr-defined]
    return resolve


__all__ = ["Resolver", "chain", "first_match"]
