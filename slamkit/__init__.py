"""Geometric solvers (EPnP, RANSAC PnP, Sim3), settings, tracking policy and trajectory export for visual SLAM."""

__version__ = "0.1.0"