"""Rotations, BAL problems, SE(3) Lie groups, g2o pose graph optimisation and PCD files."""

__version__ = "0.1.0"