"""Geometry builders and hit analysis for the SplitCal sandwich calorimeter."""

__version__ = '0.1'
