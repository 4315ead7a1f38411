"""HTTP front for the asset worker."""
