"""Discord interaction gateway for the Jill Stingray bot."""

__version__ = "0.4.0"
