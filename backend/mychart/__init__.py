"""Stock charting backend: indicator engine and drawing annotations."""
