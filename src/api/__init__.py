"""HTTP transport for the matching core."""
