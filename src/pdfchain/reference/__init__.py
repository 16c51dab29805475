"""Reference datasets joined by the modeler."""
