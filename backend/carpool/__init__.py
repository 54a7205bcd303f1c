"""Carpool booking backend."""
