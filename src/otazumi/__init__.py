"""Otazumi account service."""
