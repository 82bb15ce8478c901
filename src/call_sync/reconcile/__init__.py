"""Status reconciliation between the CallStore, the StatusProvider and the sink."""

from .poller import PollConfig, PollerState, ReconciliationPoller, SheetRow

__all__ = ["PollConfig", "PollerState", "ReconciliationPoller", "SheetRow"]
