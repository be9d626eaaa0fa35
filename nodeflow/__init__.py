"""
Nodeflow - A low-code, async-first workflow automation engine.

Assemble typed nodes (triggers, HTTP calls, code snippets, conditions,
AI agents with tools) into a directed graph and run them in dependency
order, feeding upstream outputs into downstream settings.
"""

__version__ = "1.0.0"
