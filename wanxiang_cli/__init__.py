"""
wanxiang-cli: keeps Rime scheme, dictionary and model packages up to date.
"""

__version__ = "1.0.0"
