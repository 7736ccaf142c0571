"""Stratum pool block-height monitor with pluggable notification backends."""

__version__ = "0.1.0"
