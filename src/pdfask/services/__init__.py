"""Service layer orchestrating the ask pipeline."""
