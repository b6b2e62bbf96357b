"""ACME certificate renewal pipeline.

Turns a configured renewal definition into a validated, ordered,
chained and installed certificate.
"""

__version__ = "1.0.0"
