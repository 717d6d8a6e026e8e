"""Routing: bindings and the generation-swapped routing table."""

from forest.routing.table import Binding, BindingKind, Route, RoutingTable, RoutingTableRef

__all__ = ["Binding", "BindingKind", "Route", "RoutingTable", "RoutingTableRef"]
