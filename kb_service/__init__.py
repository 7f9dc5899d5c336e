"""Knowledge base client with a two-tier article and folder cache."""

__version__ = "1.0.0"
