"""Resource properties, observed state and transaction records."""
