"""HTTP and MCP surfaces for the approval relay."""
