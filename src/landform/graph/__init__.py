"""Dependency graph building and validation."""

from landform.graph.builder import Graph, build_graph, find_cycle

__all__ = ["Graph", "build_graph", "find_cycle"]
