"""Driver for u-blox UBX receivers: device I/O, UBX parsing, pose output and a JSON-lines command."""

__version__ = "0.1.0"