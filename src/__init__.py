"""Matching and conversation consistency core."""
