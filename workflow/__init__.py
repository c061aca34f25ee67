"""
Freight workflow rules.

Pure, storage-free guards shared by the orders and assignment apps: the
role x status transition matrix, the action matrix, the status label guard and
the price visibility guard.
"""
