"""Services behind the locate search pipeline."""
