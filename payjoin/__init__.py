"""Payjoin building blocks: transactions and PSBTs, receiver parameters and errors, OHTTP keys."""

__version__ = "0.1.0"