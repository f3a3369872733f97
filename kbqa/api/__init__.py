"""HTTP surface for the KB Q&A service."""
