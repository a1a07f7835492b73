"""Probing, height mesh and compensation."""
