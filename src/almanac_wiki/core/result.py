"""
Tagged Results

Small value types returned across store and graph boundaries so that
"not found" and "failed" are explicit in the return type instead of being
encoded as ``None`` or swallowed exceptions.

    lookup = await pages.get(slug)
    if isinstance(lookup, Ok): ...
    elif isinstance(lookup, NotFound): ...
    else: ...  # Err
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")
E = TypeVar("E", bound=BaseException)


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err(Generic[E]):
    error: E

    @property
    def ok(self) -> bool:
        return False


@dataclass(frozen=True)
class NotFound:
    key: str

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err[E]]
