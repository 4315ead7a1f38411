"""Page-context helpers for pushing 3D models to the asset worker."""
