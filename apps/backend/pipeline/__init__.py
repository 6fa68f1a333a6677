"""
Job-posting extraction pipeline: attempt lifecycle, ordered steps, the
extraction cascade and the stores behind them.
"""

__version__ = "1.0.0"
