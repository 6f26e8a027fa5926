"""KGiQ Family Finance backend."""
