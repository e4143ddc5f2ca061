"""
File Task MCP Server

An MCP server that tracks server-side copy/move tasks, relays file conflict
decisions and runs local file uploads.
"""

from .engine import Engine
from .server import mcp


def main():
    """Main entry point for the package."""
    from .client import logger
    logger.info("Starting file task MCP server...")
    mcp.run()


__all__ = ["Engine", "main", "mcp"]
