"""
Shared building blocks: geo math, dataclasses, errors, configuration and
JSON logging used by the ann/, consensus/, gate/ and engine/ packages.
"""
