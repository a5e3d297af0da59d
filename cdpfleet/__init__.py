"""
cdpfleet - run scripted browser agents against remote Chrome instances over CDP.
"""
__version__ = "0.1.0"
