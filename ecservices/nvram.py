"""Named sections of non-volatile RAM, guarded for concurrent access."""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Protocol


class TableError(Exception):
    """Raised when a section table cannot be used."""


class InvalidOffsetError(TableError):
    """A table offset is outside the range the NVRAM backend can access."""

    def __init__(self, offset: int) -> None:
        super().__init__(f"invalid NVRAM offset {offset}")
        self.offset = offset


class _Backend(Protocol):
    def read(self, address: int) -> int: ...

    def write(self, address: int, value: int) -> None: ...

    def valid_range(self) -> range: ...


class NullBackend:
    """Backend with no storage: reads give 0, writes are dropped, no offset is valid.

    The number of reads and dropped writes is counted.
    """

    def __init__(self) -> None:
        self.reads = 0
        self.dropped_writes = 0

    def read(self, address: int) -> int:
        self.reads += 1
        return 0

    def write(self, address: int, value: int) -> None:
        self.dropped_writes += 1

    def valid_range(self) -> range:
        return range(0, 0)


class MemoryBackend:
    """Backend holding 32-bit words in memory over a given range of offsets."""

    def __init__(self, valid_range: range) -> None:
        self._range = valid_range
        self._words: dict[int, int] = {}

    def read(self, address: int) -> int:
        return self._words.get(address, 0)

    def write(self, address: int, value: int) -> None:
        self._words[address] = value & 0xFFFFFFFF

    def valid_range(self) -> range:
        return self._range


@dataclass
class _Section:
    offset: int
    guard: threading.Lock = field(default_factory=threading.Lock, compare=False)


class Table:
    """Section descriptor table linking indices to NVRAM offsets."""

    def __init__(self, valid_offsets: Iterable[int]) -> None:
        self.sections = tuple(_Section(offset) for offset in valid_offsets)

    def __len__(self) -> int:
        return len(self.sections)

    def get_index(self, offset: int) -> int | None:
        """Return the index of the section at ``offset``, or None."""
        return next(
            (index for index, section in enumerate(self.sections) if section.offset == offset),
            None,
        )


class ManagedSection:
    """Guarded handle to one NVRAM word."""

    def __init__(self, section: _Section, backend: _Backend) -> None:
        self._section = section
        self._backend = backend

    @property
    def offset(self) -> int:
        return self._section.offset

    def read(self) -> int:
        with self._section.guard:
            return self._backend.read(self._section.offset)

    def write(self, value: int) -> None:
        with self._section.guard:
            self._backend.write(self._section.offset, value)


class Nvram:
    """NVRAM service: a layout of sections over a storage backend."""

    def __init__(self, backend: _Backend | None = None) -> None:
        self.backend = backend if backend is not None else NullBackend()
        self._layout: tuple[_Section, ...] | None = None
        self._ready = asyncio.Event()

    async def init(self, table: Table) -> None:
        """Install ``table`` as the layout; the first successful call wins."""
        valid = self.backend.valid_range()
        for section in table.sections:
            if section.offset not in valid:
                raise InvalidOffsetError(section.offset)
        if self._layout is None:
            self._layout = table.sections
            self._ready.set()

    async def lookup_section(self, index: int) -> ManagedSection | None:
        """Wait for the layout, then return the section at ``index`` or None."""
        await self._ready.wait()
        assert self._layout is not None
        if not 0 <= index < len(self._layout):
            return None
        return ManagedSection(self._layout[index], self.backend)