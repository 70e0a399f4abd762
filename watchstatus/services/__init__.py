"""Status cascades and the services wrapped around them."""
