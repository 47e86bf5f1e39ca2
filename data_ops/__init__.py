"""
Data operations package for scatterplot data.

Provides CSV parsing, the in-memory variable store, the id join, and the
fetch coordinator that fills the store from the remote endpoint.
"""
