"""
Freight order core.

Django project hosting the multi-truck order workflow: capacity ledger,
transition guard, per-leg progress tracking and price visibility.
"""

__version__ = '0.1.0'
