"""REST and SMTP clients for the external systems."""
