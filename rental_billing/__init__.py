"""Usage-metered rental billing with monotonic invoice numbering."""

__version__ = "1.0.0"
