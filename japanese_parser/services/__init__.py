# ==== SERVICES PACKAGE ==== #

"""
Services package for the Ichiran engine integration.

This package contains the process bridge that runs ``ichiran-cli``, the
engine command builders, input text validation, and the parser service that
composes them with the resilience layer.
"""
