"""Confidential collision-risk engine over encrypted mission trajectories."""
