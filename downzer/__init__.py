"""
Downzer - Multi-mode network fuzzer and downloader

Expands target templates with numeric ranges and wordlists, runs every
concrete target through an execution mode under bounded concurrency,
and controls running tasks through a local daemon.
"""

__version__ = "0.1.0"
