"""
shellgate - safety gate between an agent and the shell.
"""

__version__ = "0.1.0"
