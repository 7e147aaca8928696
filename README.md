# ecservices

Asyncio building blocks for embedded-controller style services. Each service
reaches its hardware through small objects that you pass in, such as a GPIO
pin, a charge controller, a PD controller or a policy context. The service
logic can therefore run against real devices, simulators or test doubles. The
package has no runtime dependencies.

## Modules

- `ecservices.crc`: `Algorithm` holds the CRC parameters (width, poly, init,
  refin, refout, xorout, check). `crc_calculate(initial, algorithm, data)` runs
  a single pass. `EmbeddedCrc` accumulates a CRC over several `calculate`
  calls, and `read_crc` returns the current value, or the algorithm's `init`
  if no data has been fed yet. Some catalogue algorithms are provided, for
  example `CRC_32_ISO_HDLC`, `CRC_16_ARC` and `CRC_16_XMODEM`. A width outside
  1–64 raises `EmbeddedCrcError`.
- `ecservices.nvram`: `Table` lists the section offsets, and `get_index` maps
  an offset back to its index. `Nvram.init` checks every offset against the
  backend's valid range and raises `InvalidOffsetError` if one is outside it.
  `Nvram.lookup_section` waits until a table has been installed, then returns a
  lock-guarded `ManagedSection` or `None`. There are two backends:
  `NullBackend`, where no offset is valid, reads return 0 and writes are
  dropped, and `MemoryBackend`, which keeps 32-bit words in memory.
- `ecservices.reset`: `Blocker` objects register with a `ResetController`.
  Registering the same blocker twice raises `AlreadyRegisteredError`.
  `system_reset` signals every blocker, waits until each one has run its
  `wait_for_reset` callback, and then calls the reset function. If no reset
  function was given, it raises `ResetUnavailableError`.
- `ecservices.debounce`: `Debouncer` is an integrating debouncer. It defaults
  to a threshold of 3, a sample interval of 0.01 s and `ActiveState.ACTIVE_LOW`.
- `ecservices.button`: `Button` and `ButtonConfig` use times in seconds. The
  defaults are a 2 s short-press threshold and a 5 s timeout.
  `get_press_duration` measures one press. `check_button_press` classifies it
  as `Message.SHORT_PRESS`, `LONG_PRESS` or `PRESS_AND_HOLD`.
- `ecservices.storage_bus`: NOR command descriptors (`NorStorageCmd`,
  `NorStorageDummyCycles` and the mode, type and bus-width enums), with range
  checks on their fields. Also the `NorStorageBusError` hierarchy and abstract
  driver base classes for NOR and NAND buses.
- `ecservices.interrupt`: `InterruptSignal` passes a device interrupt through
  to the host line. It uses `deassert`, `release` and `reset` to hold off
  further interrupts until a response has been sent.
- `ecservices.power_config`: `PowerCapability` compares for equality on voltage
  and current, and orders by `max_power_mw()`. `Config` holds the power policy
  defaults.
- `ecservices.power_policy`: `PowerPolicy` connects the consumer with the most
  power and configures the chargers. It moves providers between the unlimited
  and limited levels and falls back to recovery mode when a provider fails to
  switch. It works through a context object, whose interface is described in
  the module docstring.
- `ecservices.charger`: `ChargerWrapper` is the charger state machine. It turns
  controller events and policy commands into state changes and responses.
- `ecservices.typec_service`: `TypeCService` caches the status of up to four
  ports and reports `DebugAccessoryMessage`s. It also answers external status
  commands.
- `ecservices.typec_wrapper`: `ControllerWrapper` connects a PD controller to
  the PD service and to the power policy devices. It handles plug events,
  consumer and provider contracts, and PD and power commands.

## Example

```python
from ecservices.crc import CRC_32_ISO_HDLC, EmbeddedCrc

crc = EmbeddedCrc(CRC_32_ISO_HDLC)
crc.calculate(b"1234")
print(hex(crc.calculate(b"56789")))  # 0xcbf43926
```

## What it does not do

- It contains no hardware drivers. There is no hardware CRC engine and no NVRAM
  backend beyond `MemoryBackend`. There is no platform reset either: you supply
  one as `reset_fn`.
- It has no HID-over-I2C host or device bridge. `InterruptSignal` handles only
  the interrupt line.
- It provides no command-line program. You run the services from your own
  asyncio event loop, for example `PowerPolicy.run()` or a loop over
  `ControllerWrapper.process()`.

## Tests

```
pip install -e .[test]
pytest
```