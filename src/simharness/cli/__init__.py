"""simharness command line interface."""
