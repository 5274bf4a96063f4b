"""Messaging transports. ``base`` defines the contract; ``neonize`` implements it."""
