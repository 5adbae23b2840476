"""Normative catalog, policy engine, duplicate detection and gap identification."""
