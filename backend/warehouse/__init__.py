"""
Warehouse search package: compiles structured search criteria into a single
parameterized SQL statement and runs it.

Avoid side effects here: no network, DB, or logging setup.
"""
