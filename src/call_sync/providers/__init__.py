"""StatusProvider implementations."""

from .status import HttpStatusProvider, parse_call_payload

__all__ = ["HttpStatusProvider", "parse_call_payload"]
