"""
Integ Test Orchestrator - parallel integration tests for multi-component builds.

This package provides tools for:
- Build and test manifest parsing and validation
- Artifact location and download (local directory or HTTP)
- One isolated sandbox (Docker or local) per component test task
- Staggered concurrent dispatch with a whole-run deadline
- Run summaries, per-component reports and notifications
"""

__version__ = "1.0.0"
