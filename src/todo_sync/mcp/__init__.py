"""MCP stdio server exposing the note/task sync to AI agents."""
