"""Tool-augmented conversation loop over MCP back-ends."""
__version__ = "0.1.0"
