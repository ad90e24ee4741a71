"""Application package for quotaguard."""
