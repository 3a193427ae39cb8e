"""
StepGraph - A small, async-first graph engine for chaining LLM calls.

Build workflows from step functions over a shared state: edges, parallel
fan-out with joins, conditional routing and refine loops.
"""

__version__ = "1.0.0"
