"""Cross-cutting infrastructure shared by chatfeed features."""
