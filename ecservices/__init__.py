"""Asyncio embedded-controller services: CRC, NVRAM, reset, power button, storage bus types, interrupt passthrough, power policy, charger and Type-C."""

__version__ = "0.1.0"