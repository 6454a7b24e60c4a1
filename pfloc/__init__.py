"""Particle filter localization against line-segment maps."""
