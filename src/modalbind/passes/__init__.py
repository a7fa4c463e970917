"""Compile passes, applied in order by :mod:`modalbind.compiler`."""
