"""Cortex: the interpretation pipeline and the services that run it."""
