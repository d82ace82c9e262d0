"""Base model for build-bouncer configuration sections.

Some sections own live resources: the logger's sinks hold span
processors and an open log file. Closing the top-level Config walks
its fields and releases everything below it.
"""

from __future__ import annotations

import sys
from collections.abc import Iterator
from typing import Protocol, runtime_checkable

from pydantic import BaseModel


@runtime_checkable
class Closeable(Protocol):
    def close(self) -> None: ...


class BaseConfig(BaseModel):
    """Configuration section that closes the resources its fields own.

    Works as a context manager. A child that fails to close is reported
    on stderr and the remaining children are still closed.
    """

    def closeable_fields(self) -> Iterator[tuple[str, Closeable]]:
        """Yield ``(field name, child)`` for every closeable field."""
        for name in type(self).model_fields:
            child = getattr(self, name, None)
            if isinstance(child, Closeable):
                yield name, child

    def close(self) -> None:
        for name, child in self.closeable_fields():
            try:
                child.close()
            except Exception as e:
                # Not through the logger: a sink may be what failed
                print(
                    f"build-bouncer: error closing "
                    f"{type(self).__name__}.{name}: {e}",
                    file=sys.stderr,
                )

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()
        return False
