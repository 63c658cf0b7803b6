"""Lookup outcomes returned by the message repository.

Query operations return one of three variants instead of raising, so the
HTTP layer decides how each outcome is surfaced:

    result = await repository.load_detail(message_id)
    if isinstance(result, Found):
        ...
    elif isinstance(result, NotFound):
        ...  # 404
    else:
        ...  # ParseFailed, 422

Storage failures are not an outcome; StorageError always propagates.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Found(Generic[T]):
    value: T


@dataclass(frozen=True)
class NotFound:
    reason: str


@dataclass(frozen=True)
class ParseFailed:
    reason: str


LookupResult = Union[Found[T], NotFound, ParseFailed]
