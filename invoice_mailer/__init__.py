"""
Invoice Mailer — match invoice files to recipients and send them via Microsoft Graph.
"""

__version__ = "0.3.0"
