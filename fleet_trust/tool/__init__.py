"""Command line tool for reconciling fleet trust bundles."""
