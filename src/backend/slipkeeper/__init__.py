"""Receipt text extraction and return/warranty deadline computation."""

__version__ = "0.1.0"
