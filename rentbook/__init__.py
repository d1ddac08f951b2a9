"""rentbook: rent revisions, monthly wing billing and payment reconciliation."""

__version__ = "0.1.0"
