"""Launchpad Indexer - chain-state sync engine and bonding-curve pricing for a Stacks token launchpad."""

__version__ = "0.1.0"
