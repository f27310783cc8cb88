"""Service layer: module-level async operations over the document store."""
