"""panelterm - terminal tab session multiplexer for a desktop control panel."""

__version__ = "0.1.0"
