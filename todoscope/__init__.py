"""todoscope - find TODO/FIXME style annotations in buffers and directory trees."""

__version__ = "0.3.0"
