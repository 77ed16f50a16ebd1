# Rule engine: cell context snapshot -> predicate evaluation -> config resolution
