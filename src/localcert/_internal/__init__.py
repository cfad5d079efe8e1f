"""Internal implementation details of localcert."""
