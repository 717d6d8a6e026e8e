"""Forest: event dispatch and execution engine for TreeHouses and Nims."""

__version__ = "0.1.0"
