#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Type hints used internally by this package"""

from __future__ import annotations

from typing import (
    Any,
    AsyncContextManager,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    NamedTuple,
    Optional,
    Sequence,
    Set,
    Tuple,
    Type,
    TypeVar,
    Union,
    cast,
  )
from types import TracebackType
from typing_extensions import Self, TypeAlias

JsonableTypes = ( str, int, float, bool, dict, list )
"""Runtime types that can appear in a deserialized JSON value (plus None)."""

Jsonable: TypeAlias = Union[str, int, float, bool, None, Dict[str, Any], List[Any]]
"""A type hint for a value that can be serialized to JSON"""

JsonableDict: TypeAlias = Dict[str, Jsonable]
"""A type hint for a JSON object"""

JsonableList: TypeAlias = List[Jsonable]
"""A type hint for a JSON array"""

HostAndPort: TypeAlias = Tuple[str, int]
"""An (ip_address, port) tuple as used by socket APIs"""
