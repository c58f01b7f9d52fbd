"""
Gaussian stretch - command framework.

This package contains:
- Command metadata and preset validation (commands)
"""
