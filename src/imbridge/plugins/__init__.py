"""Built-in imbridge plugins."""
