"""Target plugins (where the identifiers of a renewal come from)."""
