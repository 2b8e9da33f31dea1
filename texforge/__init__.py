"""
texforge - Asynchronous LaTeX compilation scheduler

Accepts LaTeX documents, queues them by priority, runs an external LaTeX
compiler with bounded concurrency and reports progress, diagnostics and the
resulting PDF for every job.

Architecture:
- Compilation Context: job queue, compiler processes, log parsing, availability probing
- Utils: logging setup, timestamps, hashing, PDF inspection
"""

__version__ = "0.1.0"
