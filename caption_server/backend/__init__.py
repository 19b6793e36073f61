"""Caption server backend layers."""
