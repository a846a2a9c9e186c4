"""Request-forwarding proxy used for server-side cookie handling."""
