"""
vault-inspector - index a vault of interlinked markdown notes.

Turns a folder of notes into a queryable knowledge graph with full-text
retrieval, reachable from a command line or as an MCP server.

Stack:
- Python + FastMCP (MCP server over stdio)
- SQLite FTS5 (search index and link graph)
"""

__version__ = "0.1.0"
