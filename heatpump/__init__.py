"""
Heat pump monitoring and automation over ModBus TCP.
"""

__version__ = '1.0.0'
