"""taskbot — scheduled automation jobs with compiled executors."""

__version__ = "0.1.0"
