"""Relational persistence for the SQL document-store backend."""
