"""SinkClient implementations: in-memory and Google Sheets v4 REST."""

from .memory import MemorySinkClient, SinkCall
from .sheets import SheetsSinkClient

__all__ = ["MemorySinkClient", "SinkCall", "SheetsSinkClient"]
