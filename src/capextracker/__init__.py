"""Capital-expenditure tracker: forecast allocations, actuals and budget roll-ups."""

__version__ = "0.1.0"
