"""Bodega Cat Map backend: cats, visits, treats, comments and leaderboards."""
