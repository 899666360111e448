"""Transport, parsing and configuration loading."""
