"""FastAPI server exposing the image-editing pass-through endpoint."""
