"""Models of the HLS Fixture Server."""
