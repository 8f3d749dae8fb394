"""WBS diagram backend - engine, REST/WebSocket service and CLI."""
