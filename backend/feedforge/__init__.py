"""Feedforge - product feed generation and automation service."""
