"""
Resilient bridge to the Ichiran Japanese text analysis engine.

Provides rate limiting, circuit breaking and timeout control around
``ichiran-cli`` invocations, and decoding of the engine's output formats.
"""

__version__ = "0.1.1"
