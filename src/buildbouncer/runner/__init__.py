"""Check execution: shell resolution, process running, output capture."""
