"""Command-line interface for clustertask.

This module provides the `clustertask` CLI command.

Usage:
    clustertask info [--env ENV] [--clusterfile PATH]
    clustertask submit <module:function> [--arg VALUE ...] [--step STEP] [--no-wait]
    clustertask status <job-id> [--env ENV] [--clusterfile PATH]
    clustertask stop <job-id>... [--env ENV] [--clusterfile PATH]
"""

from .app import app, main

__all__ = ["app", "main"]
