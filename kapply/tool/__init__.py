"""Command line tool for kapply."""
