"""Messaging client services."""
