"""Route modules of the taskboard API."""
