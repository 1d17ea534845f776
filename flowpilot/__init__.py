"""flowpilot - adaptive multi-step task execution over external tool providers."""

__version__ = "0.1.0"
