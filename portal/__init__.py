"""Web application for the college placement portal."""
