"""Pure calculation engines: zero I/O, inputs and outputs are frozen dataclasses."""
