"""
WineCellar - Wine prefix manager.

Creates and maintains Wine prefixes, installs runtime dependencies with
winetricks and DXVK, and installs and launches Steam inside Wine.
"""

__version__ = "1.0.0"
