"""Resumable CRC calculation over a parameterised CRC algorithm."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Algorithm:
    """CRC algorithm parameters in the usual catalogue form."""

    width: int
    poly: int
    init: int
    refin: bool
    refout: bool
    xorout: int
    check: int = 0


CRC_32_ISO_HDLC = Algorithm(32, 0x04C11DB7, 0xFFFFFFFF, True, True, 0xFFFFFFFF, 0xCBF43926)
CRC_32_BZIP2 = Algorithm(32, 0x04C11DB7, 0xFFFFFFFF, False, False, 0xFFFFFFFF, 0xFC891918)
CRC_32_MPEG_2 = Algorithm(32, 0x04C11DB7, 0xFFFFFFFF, False, False, 0x00000000, 0x0376E6E7)
CRC_16_IBM_3740 = Algorithm(16, 0x1021, 0xFFFF, False, False, 0x0000, 0x29B1)
CRC_16_ARC = Algorithm(16, 0x8005, 0x0000, True, True, 0x0000, 0xBB3D)
CRC_16_KERMIT = Algorithm(16, 0x1021, 0x0000, True, True, 0x0000, 0x2189)
CRC_16_XMODEM = Algorithm(16, 0x1021, 0x0000, False, False, 0x0000, 0x31C3)


class EmbeddedCrcError(Exception):
    """Raised when a CRC cannot be calculated.

    ``reason`` is one of ``"unknown"``, ``"width"``, ``"polynomial"``,
    ``"xorout"`` or ``"mutex"``.
    """

    def __init__(self, reason: str = "unknown", message: str | None = None) -> None:
        super().__init__(message or f"CRC error: {reason}")
        self.reason = reason


def _reflect(value: int, width: int) -> int:
    return int(format(value, f"0{width}b")[::-1], 2)


def crc_calculate(initial: int, algorithm: Algorithm, data: bytes) -> int:
    """Run ``data`` through ``algorithm`` starting from register value ``initial``."""
    width = algorithm.width
    if not 1 <= width <= 64:
        raise EmbeddedCrcError("width", f"unsupported CRC width {width}")
    mask = (1 << width) - 1
    poly = algorithm.poly & mask
    register = initial & mask
    for byte in bytes(data):
        if algorithm.refin:
            byte = _reflect(byte, 8)
        for shift in range(7, -1, -1):
            feedback = ((byte >> shift) & 1) ^ ((register >> (width - 1)) & 1)
            register = (register << 1) & mask
            if feedback:
                register ^= poly
    if algorithm.refout:
        register = _reflect(register, width)
    return (register ^ algorithm.xorout) & mask


class EmbeddedCrc:
    """CRC accumulator that can be fed data in several pieces."""

    def __init__(self, algorithm: Algorithm) -> None:
        self.algorithm = algorithm
        self._current: int | None = None

    def calculate(self, data: bytes) -> int:
        """Feed ``data`` and return the CRC of everything fed so far.

        A failed calculation leaves the stored CRC unchanged, so it can be retried.
        """
        if self._current is None:
            initial = self.algorithm.init
        else:
            initial = self._un_finalize(self._current)
        crc = crc_calculate(initial, self.algorithm, data)
        self._current = crc
        return crc

    def read_crc(self) -> int:
        """Return the current CRC, or the algorithm's initial value if nothing was fed."""
        return self.algorithm.init if self._current is None else self._current

    def _un_finalize(self, crc: int) -> int:
        out = crc ^ self.algorithm.xorout
        if self.algorithm.refout:
            out = _reflect(out, self.algorithm.width)
        return out