"""checkgate - checkpoint gate engine for agent-driven software tasks."""

__version__ = "0.1.0"
