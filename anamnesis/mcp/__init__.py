"""MCP server exposing anamnesis memory operations as tools."""
