"""baljax: balance operator of a variational data assimilation system."""
__version__ = "0.1.0"
