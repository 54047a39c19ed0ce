"""Scan engine, live tailing and search services."""
