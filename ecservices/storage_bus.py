"""Command descriptions and driver interfaces for NOR and NAND storage buses."""

from __future__ import annotations

import abc
import enum
from dataclasses import dataclass

_U8_MAX = 0xFF
_U32_MAX = 0xFFFFFFFF


def _check_range(name: str, value: int | None, maximum: int) -> None:
    if value is not None and not 0 <= value <= maximum:
        raise ValueError(f"{name} must be between 0 and {maximum}, got {value}")


class NorStorageCmdMode(enum.Enum):
    """Data transfer mode."""

    DDR = "ddr"
    """Double data rate."""
    SDR = "sdr"
    """Single data rate."""


class NorStorageCmdType(enum.Enum):
    """Direction of the data phase of a command."""

    READ = "read"
    WRITE = "write"


class NorStorageBusWidth(enum.Enum):
    """Bus width as the number of data signals."""

    SINGLE = 1
    DUAL = 2
    QUAD = 4
    OCTAL = 8

    @property
    def lines(self) -> int:
        """Number of data lines used."""
        return self.value


class DummyUnit(enum.Enum):
    """Unit in which dummy cycles are counted."""

    CLOCKS = "clocks"
    BYTES = "bytes"


@dataclass(frozen=True)
class NorStorageDummyCycles:
    """Dummy cycles inserted before the data phase, at most 255."""

    unit: DummyUnit
    count: int

    def __post_init__(self) -> None:
        _check_range("dummy cycle count", self.count, _U8_MAX)

    @classmethod
    def clocks(cls, count: int) -> "NorStorageDummyCycles":
        """Dummy cycles counted in clock cycles."""
        return cls(DummyUnit.CLOCKS, count)

    @classmethod
    def bytes(cls, count: int) -> "NorStorageDummyCycles":
        """Dummy cycles counted in bytes."""
        return cls(DummyUnit.BYTES, count)


@dataclass(frozen=True)
class NorStorageCmd:
    """A command sent by a NOR storage device driver over its bus."""

    cmd_lb: int
    mode: NorStorageCmdMode
    dummy: NorStorageDummyCycles
    bus_width: NorStorageBusWidth
    cmd_ub: int | None = None
    addr: int | None = None
    addr_width: int | None = None
    cmdtype: NorStorageCmdType | None = None
    data_bytes: int | None = None

    def __post_init__(self) -> None:
        _check_range("cmd_lb", self.cmd_lb, _U8_MAX)
        _check_range("cmd_ub", self.cmd_ub, _U8_MAX)
        _check_range("addr", self.addr, _U32_MAX)
        _check_range("addr_width", self.addr_width, _U8_MAX)
        _check_range("data_bytes", self.data_bytes, _U32_MAX)


class NorStorageBusError(Exception):
    """Base class for storage bus failures."""


class StorageBusNotAvailable(NorStorageBusError):
    """The bus is not available, e.g. arbitration lost or not powered."""


class StorageBusIoError(NorStorageBusError):
    """A read or write on the bus failed."""


class StorageBusInternalError(NorStorageBusError):
    """The bus driver failed internally."""


class BlockingNorStorageBusDriver(abc.ABC):
    """Bus driver used by NOR device drivers to send commands (SPI, FlexSPI, ...)."""

    @abc.abstractmethod
    def send_command(
        self,
        cmd: NorStorageCmd,
        read_buf: bytearray | memoryview | None,
        write_buf: bytes | None,
    ) -> None:
        """Send ``cmd``, filling ``read_buf`` or sending ``write_buf``.

        Raises NorStorageBusError on failure.
        """


class AsyncNorStorageBusDriver(abc.ABC):
    """Asynchronous bus driver used by NOR device drivers to send commands."""

    @abc.abstractmethod
    async def send_command(
        self,
        cmd: NorStorageCmd,
        read_buf: bytearray | memoryview | None,
        write_buf: bytes | None,
    ) -> None:
        """Send ``cmd``, filling ``read_buf`` or sending ``write_buf``.

        Raises NorStorageBusError on failure.
        """


class BlockingNandStorageBusDriver(abc.ABC):
    """Marker interface for blocking NAND storage bus drivers."""


class AsyncNandStorageBusDriver(abc.ABC):
    """Marker interface for asynchronous NAND storage bus drivers."""