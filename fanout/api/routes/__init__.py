from . import devices, events

__all__ = ["devices", "events"]
