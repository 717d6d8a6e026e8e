"""Dispatch: in-flight records, dedup window and the Dispatcher."""

from forest.dispatch.dedup import DedupWindow
from forest.dispatch.dispatcher import Dispatcher, compute_retry_delay
from forest.dispatch.records import InFlightRecord, RecordStatus

__all__ = ["DedupWindow", "Dispatcher", "InFlightRecord", "RecordStatus", "compute_retry_delay"]
