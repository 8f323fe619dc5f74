"""Domain services for the auction admin backend."""
