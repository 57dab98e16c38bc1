"""Image normalization, inference, and ranking."""
