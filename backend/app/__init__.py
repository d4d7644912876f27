"""GreConnect backend application."""
