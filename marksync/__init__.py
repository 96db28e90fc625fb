"""Client-side bookmark list kept in sync with a remote multi-writer store."""
