"""
Eaiser - a personal notebook engine.
Organizes snippets, markdown documents, imported PDFs and runnable shell
scripts into a hierarchical category tree, and assembles note contents as
context for an AI chat helper. The operations are served over MCP.

This version uses synchronous operations.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("eaiser-notes")
except PackageNotFoundError:
    __version__ = "0.3.0"
