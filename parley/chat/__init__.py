"""Session-scoped streaming chat turns."""
