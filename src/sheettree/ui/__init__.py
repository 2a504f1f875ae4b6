"""Local HTTP surface for the tree view."""
